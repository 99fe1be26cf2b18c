"""Pydantic request/response schemas for the Mission Control API."""
from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mission_control.pipeline import PIPELINE_STAGES


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def payload(self) -> dict[str, Any]:
        """Fields the client actually sent, JSON-ready."""
        return self.model_dump(mode="json", exclude_unset=True, by_alias=False)


def _check_stage(value: str | None) -> str | None:
    if value is not None and value not in PIPELINE_STAGES:
        raise ValueError(f"pipeline_status must be one of: {', '.join(PIPELINE_STAGES)}")
    return value


# ---------------------------------------------------------------------------
# Partners
# ---------------------------------------------------------------------------


class _PartnerFields(_Body):
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    territory: str | None = None
    website: str | None = None
    phone: str | None = None
    email: str | None = None
    partner_type: str | None = None
    pipeline_status: str | None = None
    lead_source: str | None = None
    total_medallions_ordered: int | None = None
    mrr: float | None = None
    last_contact_at: dt.datetime | None = None
    next_action: str | None = None
    next_action_due: dt.date | None = None
    next_action_assignee: str | None = None
    notes: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    delivery_radius_miles: float | None = None

    @field_validator("pipeline_status")
    @classmethod
    def known_stage(cls, value: str | None) -> str | None:
        return _check_stage(value)


class PartnerCreate(_PartnerFields):
    name: str = Field(min_length=1)


class PartnerUpdate(_PartnerFields):
    name: str | None = None


# ---------------------------------------------------------------------------
# Partner children
# ---------------------------------------------------------------------------


class ContactCreate(_Body):
    name: str = Field(min_length=1)
    role: str | None = None
    phone: str | None = None
    email: str | None = None
    preferred_contact_method: str | None = None
    notes: str | None = None


class ContactUpdate(_Body):
    contact_id: str = Field(alias="contactId")
    name: str | None = None
    role: str | None = None
    phone: str | None = None
    email: str | None = None
    preferred_contact_method: str | None = None
    notes: str | None = None


class InteractionCreate(_Body):
    type: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    contact_id: str | None = None
    direction: str | None = None
    outcome: str | None = None
    logged_by: str | None = None
    raw_note: str | None = None
    interaction_date: dt.datetime | None = None


class InteractionUpdate(_Body):
    interaction_id: str = Field(alias="interactionId")
    type: str | None = None
    direction: str | None = None
    summary: str | None = None
    outcome: str | None = None
    logged_by: str | None = None
    raw_note: str | None = None
    interaction_date: dt.datetime | None = None


class ActionItemCreate(_Body):
    title: str = Field(min_length=1)
    description: str | None = None
    due_date: dt.date | None = None
    priority: Literal["low", "medium", "high"] | None = None
    assignee: str | None = None


class ActionItemUpdate(_Body):
    id: str
    status: str | None = None
    title: str | None = None
    description: str | None = None
    due_date: dt.date | None = None
    priority: Literal["low", "medium", "high"] | None = None
    assignee: str | None = None


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class GoalCreate(_Body):
    title: str = Field(min_length=1)
    quarter: str = Field(min_length=1)
    description: str | None = None
    category: str | None = None
    target_metric: str | None = None
    current_value: float | None = None
    target_value: float | None = None
    unit: str | None = None
    status: str | None = None
    owner: str | None = None
    notes: str | None = None


class GoalUpdate(_Body):
    title: str | None = None
    quarter: str | None = None
    description: str | None = None
    category: str | None = None
    target_metric: str | None = None
    current_value: float | None = None
    target_value: float | None = None
    unit: str | None = None
    status: str | None = None
    owner: str | None = None
    notes: str | None = None


class WeekCreate(_Body):
    week_start: dt.date
    quarter: str = Field(min_length=1)
    theme: str | None = None
    planned_outcomes: list[Any] | None = None
    retrospective: str | None = None
    score: float | None = None
    blake_score: float | None = None
    joe_score: float | None = None


class WeekUpdate(_Body):
    week_start: dt.date | None = None
    quarter: str | None = None
    theme: str | None = None
    planned_outcomes: list[Any] | None = None
    retrospective: str | None = None
    score: float | None = None
    blake_score: float | None = None
    joe_score: float | None = None


class DailyTaskCreate(_Body):
    date: dt.date
    owner: str = Field(min_length=1)
    task: str = Field(min_length=1)
    week_id: str | None = None
    goal_id: str | None = None
    priority: int | None = None
    status: str | None = None
    notes: str | None = None


class DailyTaskUpdate(_Body):
    status: str | None = None
    task: str | None = None
    priority: int | None = None
    notes: str | None = None
    goal_id: str | None = None
    date: dt.date | None = None
    owner: str | None = None
    week_id: str | None = None


# ---------------------------------------------------------------------------
# Kanban & crons
# ---------------------------------------------------------------------------


class KanbanTaskCreate(_Body):
    title: str = Field(min_length=1)
    board: str = Field(min_length=1)
    description: str | None = None
    status: str | None = None
    assignee: str | None = None
    priority: Literal["low", "medium", "high"] | None = None


class KanbanTaskUpdate(_Body):
    id: str
    title: str | None = None
    board: str | None = None
    description: str | None = None
    status: str | None = None
    assignee: str | None = None
    priority: Literal["low", "medium", "high"] | None = None
    archived: bool | None = None


class CronJobsBody(_Body):
    jobs: list[dict[str, Any]]


class BibleUpdateBody(_Body):
    request: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


class AskRequest(_Body):
    question: str = Field(min_length=1)


class KnowledgeItemDelete(_Body):
    id: str = Field(min_length=1)


class AskResponse(BaseModel):
    answer: str
    sources: list[dict[str, Any]] = []


class SearchResponse(BaseModel):
    results: list[dict[str, Any]] = []
    query: str = ""
    mode: Literal["list", "semantic", "text"]


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class PartnerStatsOut(BaseModel):
    totalPartners: int
    activePartners: int
    openActionItems: int
    overdueActionItems: int
    avgHealthScore: int
    pipelineCounts: dict[str, int]


class ImportResult(BaseModel):
    rows_read: int
    upserted: int
    skipped: int
    by_stage: dict[str, int] = {}
