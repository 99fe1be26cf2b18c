from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _id() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def _timestamp() -> Mapped[dt.datetime]:
    return mapped_column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# CRM
# ---------------------------------------------------------------------------


class Partner(Base):
    __tablename__ = "crm_partners"

    id: Mapped[uuid.UUID] = _id()
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(Text)
    state: Mapped[str | None] = mapped_column(String(50))
    zip: Mapped[str | None] = mapped_column(String(20))
    territory: Mapped[str | None] = mapped_column(Text)
    website: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    partner_type: Mapped[str] = mapped_column(String(50), default="monument_company", index=True)
    pipeline_status: Mapped[str] = mapped_column(String(30), default="prospect", index=True)
    lead_source: Mapped[str | None] = mapped_column(Text)
    total_medallions_ordered: Mapped[int] = mapped_column(Integer, default=0)
    mrr: Mapped[float] = mapped_column(Float, default=0)
    health_score: Mapped[int | None] = mapped_column(Integer)
    last_contact_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    next_action: Mapped[str | None] = mapped_column(Text)
    next_action_due: Mapped[dt.date | None] = mapped_column(Date)
    next_action_assignee: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    delivery_radius_miles: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[dt.datetime] = _timestamp()
    updated_at: Mapped[dt.datetime] = _timestamp()

    contacts: Mapped[list[Contact]] = relationship(back_populates="partner", cascade="all, delete-orphan")
    interactions: Mapped[list[Interaction]] = relationship(back_populates="partner", cascade="all, delete-orphan")
    action_items: Mapped[list[ActionItem]] = relationship(back_populates="partner", cascade="all, delete-orphan")


class Contact(Base):
    __tablename__ = "crm_contacts"

    id: Mapped[uuid.UUID] = _id()
    partner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("crm_partners.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    preferred_contact_method: Mapped[str] = mapped_column(String(20), default="email")
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = _timestamp()
    updated_at: Mapped[dt.datetime] = _timestamp()

    partner: Mapped[Partner] = relationship(back_populates="contacts")


class Interaction(Base):
    __tablename__ = "crm_interactions"

    id: Mapped[uuid.UUID] = _id()
    partner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("crm_partners.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("crm_contacts.id", ondelete="SET NULL"))
    type: Mapped[str] = mapped_column(String(30), nullable=False)  # call | email | visit | meeting | note
    direction: Mapped[str | None] = mapped_column(String(20))
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[str | None] = mapped_column(Text)
    logged_by: Mapped[str | None] = mapped_column(Text)
    raw_note: Mapped[str | None] = mapped_column(Text)
    interaction_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    created_at: Mapped[dt.datetime] = _timestamp()

    partner: Mapped[Partner] = relationship(back_populates="interactions")


class ActionItem(Base):
    __tablename__ = "crm_action_items"

    id: Mapped[uuid.UUID] = _id()
    partner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("crm_partners.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    due_date: Mapped[dt.date | None] = mapped_column(Date)
    priority: Mapped[str] = mapped_column(String(10), default="medium")  # low | medium | high
    assignee: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending | overdue | completed
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = _timestamp()

    partner: Mapped[Partner] = relationship(back_populates="action_items")


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class Goal(Base):
    __tablename__ = "planning_goals"

    id: Mapped[uuid.UUID] = _id()
    title: Mapped[str] = mapped_column(Text, nullable=False)
    quarter: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(30), default="business")
    target_metric: Mapped[str | None] = mapped_column(Text)
    current_value: Mapped[float] = mapped_column(Float, default=0)
    target_value: Mapped[float] = mapped_column(Float, default=0)
    unit: Mapped[str | None] = mapped_column(String(30))
    status: Mapped[str] = mapped_column(String(20), default="on_track")
    owner: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = _timestamp()
    updated_at: Mapped[dt.datetime] = _timestamp()


class Week(Base):
    __tablename__ = "planning_weeks"

    id: Mapped[uuid.UUID] = _id()
    week_start: Mapped[dt.date] = mapped_column(Date, nullable=False)
    quarter: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    theme: Mapped[str | None] = mapped_column(Text)
    planned_outcomes: Mapped[list[Any]] = mapped_column(JSON, default=list)
    retrospective: Mapped[str | None] = mapped_column(Text)
    score: Mapped[float | None] = mapped_column(Float)
    blake_score: Mapped[float | None] = mapped_column(Float)
    joe_score: Mapped[float | None] = mapped_column(Float)
    created_at: Mapped[dt.datetime] = _timestamp()
    updated_at: Mapped[dt.datetime] = _timestamp()


class DailyTask(Base):
    __tablename__ = "planning_daily"

    id: Mapped[uuid.UUID] = _id()
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    task: Mapped[str] = mapped_column(Text, nullable=False)
    week_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("planning_weeks.id", ondelete="SET NULL"))
    goal_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("planning_goals.id", ondelete="SET NULL"))
    priority: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    notes: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = _timestamp()


# ---------------------------------------------------------------------------
# Kanban & bible
# ---------------------------------------------------------------------------


class KanbanBoard(Base):
    __tablename__ = "kanban_boards"

    id: Mapped[uuid.UUID] = _id()
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[dt.datetime] = _timestamp()


class KanbanTask(Base):
    __tablename__ = "kanban_tasks"

    id: Mapped[uuid.UUID] = _id()
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(30), default="backlog")
    board: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    assignee: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[str] = mapped_column(String(10), default="medium")
    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[dt.datetime] = _timestamp()
    updated_at: Mapped[dt.datetime] = _timestamp()


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = _id()
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    content: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[dt.datetime] = _timestamp()


class BibleUpdateRequest(Base):
    __tablename__ = "bible_update_requests"

    id: Mapped[uuid.UUID] = _id()
    request: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[dt.datetime] = _timestamp()


# ---------------------------------------------------------------------------
# Bookkeeping
# ---------------------------------------------------------------------------


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    name: Mapped[str] = mapped_column(String(200), primary_key=True)
    applied_at: Mapped[dt.datetime] = _timestamp()
