"""Shared business logic for the Mission Control API and MCP server."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from mission_control.activity import (
    RECENT_CALLS,
    daily_usage,
    live_sessions,
    period_start,
    session_summary,
    sum_cost,
    usage_summary,
)
from mission_control.health import HEALTH_BANDS, average_health, health_band, health_score, with_health
from mission_control.pipeline import PipelineSummary, aggregate_pipeline, pipeline_counts
from mission_control.proxy import Collection, ProxyError, Record, utcnow_iso
from mission_control.store import StoreClient, StoreError, eq, gte, ilike, in_, not_null

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Write hooks
# ---------------------------------------------------------------------------


def stamp_health(data: Record) -> Record:
    """Keep a persisted health_score in step with last_contact_at."""
    if "last_contact_at" in data:
        return {**data, "health_score": health_score(data["last_contact_at"])}
    return data


def stamp_action_completion(data: Record) -> Record:
    if data.get("status") == "completed":
        return {**data, "completed_at": utcnow_iso()}
    return data


def stamp_task_completion(data: Record) -> Record:
    if "status" not in data:
        return data
    return {**data, "completed_at": utcnow_iso() if data["status"] == "done" else None}


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

PARTNER_DEFAULTS: dict[str, Any] = {
    "address": None, "city": None, "state": None, "zip": None, "territory": None,
    "website": None, "phone": None, "email": None,
    "partner_type": "monument_company", "pipeline_status": "prospect",
    "lead_source": None, "total_medallions_ordered": 0, "mrr": 0,
    "last_contact_at": None, "next_action": None, "next_action_due": None,
    "next_action_assignee": None, "notes": None,
}

PARTNER_UPDATABLE = (
    "name", *PARTNER_DEFAULTS, "latitude", "longitude", "delivery_radius_miles",
)

PARTNERS = Collection(
    table="crm_partners", plural="partners", singular="partner", label="Partner",
    columns="*,crm_contacts(id,name,role,email,phone,preferred_contact_method)",
    order=("created_at.desc",), limit=500,
    filters={"status": "pipeline_status", "assignee": "next_action_assignee", "partnerType": "partner_type"},
    search_field="name",
    required=("name",), defaults=PARTNER_DEFAULTS, updatable=PARTNER_UPDATABLE,
    stamp_updated_at=True, on_read=with_health, on_write=stamp_health,
)

CONTACTS = Collection(
    table="crm_contacts", plural="contacts", singular="contact", label="Contact",
    order=("created_at.asc",), limit=None, parent_key="partner_id",
    required=("name",),
    defaults={"role": None, "phone": None, "email": None, "preferred_contact_method": "email", "notes": None},
    updatable=("name", "role", "phone", "email", "preferred_contact_method", "notes"),
)

INTERACTIONS = Collection(
    table="crm_interactions", plural="interactions", singular="interaction", label="Interaction",
    order=("interaction_date.desc",), limit=None, parent_key="partner_id",
    required=("type", "summary"),
    defaults={
        "contact_id": None, "direction": None, "outcome": None,
        "logged_by": None, "raw_note": None, "interaction_date": None,
    },
    updatable=("type", "direction", "summary", "outcome", "logged_by", "raw_note", "interaction_date"),
)

ACTION_ITEMS = Collection(
    table="crm_action_items", plural="actions", singular="action", label="Action item",
    order=("due_date.asc",), limit=None, parent_key="partner_id",
    required=("title",),
    defaults={"description": None, "due_date": None, "priority": "medium", "assignee": None},
    fixed={"status": "pending"},
    updatable=("status", "title", "description", "due_date", "priority", "assignee"),
    on_write=stamp_action_completion,
)

GOALS = Collection(
    table="planning_goals", plural="goals", singular="goal", label="Goal",
    order=("created_at.desc",), limit=500, filters={"quarter": "quarter"},
    required=("title", "quarter"),
    defaults={
        "description": None, "category": "business", "target_metric": None,
        "current_value": 0, "target_value": 0, "unit": None, "status": "on_track",
        "owner": None, "notes": None,
    },
    updatable=(
        "title", "quarter", "description", "category", "target_metric", "current_value",
        "target_value", "unit", "status", "owner", "notes",
    ),
    stamp_updated_at=True,
)

WEEKS = Collection(
    table="planning_weeks", plural="weeks", singular="week", label="Week",
    order=("week_start.asc",), limit=500, filters={"quarter": "quarter"},
    required=("week_start", "quarter"),
    defaults={
        "theme": None, "planned_outcomes": [], "retrospective": None,
        "score": None, "blake_score": None, "joe_score": None,
    },
    updatable=(
        "week_start", "quarter", "theme", "planned_outcomes", "retrospective",
        "score", "blake_score", "joe_score",
    ),
    stamp_updated_at=True,
)

DAILY_TASKS = Collection(
    table="planning_daily", plural="tasks", singular="task", label="Task",
    order=("date.asc", "priority.asc", "created_at.asc"), limit=1000,
    filters={"date": "date", "owner": "owner", "week_id": "week_id"},
    required=("date", "owner", "task"),
    defaults={"week_id": None, "goal_id": None, "priority": 1, "status": "pending", "notes": None},
    updatable=("status", "task", "priority", "notes", "goal_id", "owner", "date", "week_id"),
    on_write=stamp_task_completion,
)

KANBAN_BOARDS = Collection(
    table="kanban_boards", plural="boards", singular="board", label="Board",
    order=("display_order.asc",), limit=None,
)

KANBAN_TASKS = Collection(
    table="kanban_tasks", plural="tasks", singular="task", label="Task",
    order=("created_at.asc",), limit=None, filters={"board": "board"},
    required=("title", "board"),
    defaults={"description": "", "status": "backlog", "assignee": "", "priority": "medium"},
    fixed={"archived": False},
    updatable=("title", "description", "status", "board", "assignee", "priority", "archived"),
)

CRON_JOBS = Collection(
    table="cron_jobs", plural="jobs", singular="job", label="Cron job",
    order=("name.asc",), limit=None,
)

SESSIONS = Collection(
    table="sessions_log", plural="sessions", singular="session", label="Session",
    order=("last_active_at.desc",), limit=500, filters={"kind": "kind", "status": "status"},
)

USAGE = Collection(
    table="usage_logs", plural="calls", singular="call", label="Usage record",
    order=("recorded_at.desc",), limit=5000,
    filters={"provider": "provider", "model": "model", "sessionKind": "session_kind"},
)

BIBLE_UPDATES = Collection(
    table="bible_update_requests", plural="requests", singular="request", label="Update request",
    required=("request",),
)

DOCUMENTS_TABLE = "documents"
BIBLE_KEY = "pontis-bible"

# Detail view caps the interaction history
DETAIL_INTERACTION_LIMIT = 50

MAP_COLUMNS = (
    "id,name,city,state,partner_type,pipeline_status,phone,website,"
    "latitude,longitude,delivery_radius_miles"
)

FUNNEL_PARTNER_TYPE = "monument_company"
FUNNEL_FILTERS = {"state": "state", "territory": "territory"}
FUNNEL_LIMIT = 1000

# ---------------------------------------------------------------------------
# Partners
# ---------------------------------------------------------------------------


async def list_partners(store: StoreClient, params: Mapping[str, Any]) -> list[Record]:
    """Filtered partner list with recomputed health, optionally narrowed by health band."""
    partners = await PARTNERS.list_rows(store, params)
    band = params.get("health")
    # unknown bands, like "all", leave the list unfiltered
    if band in HEALTH_BANDS:
        partners = [p for p in partners if health_band(p["health_score"]) == band]
    return partners


async def _section(label: str, coro) -> list[Record]:
    """Await one parallel read; a failure degrades that section to an empty list."""
    try:
        return await coro
    except StoreError as exc:
        log.warning("%s read failed: %s", label, exc)
        return []


async def partner_detail(store: StoreClient, partner_id: str) -> dict[str, Any]:
    """Partner plus contacts, interactions and action items, read in parallel.

    All four reads finish before anything is raised. A failed partner read
    is raised; failed child reads are already empty lists.
    """
    results = await asyncio.gather(
        PARTNERS.get(store, partner_id),
        _section("Partner contacts", CONTACTS.list_rows(store, parent_id=partner_id)),
        _section("Partner interactions", store.select(
            INTERACTIONS.table, "*", [eq("partner_id", partner_id)],
            INTERACTIONS.order, DETAIL_INTERACTION_LIMIT,
        )),
        _section("Partner actions", ACTION_ITEMS.list_rows(store, parent_id=partner_id)),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    partner, contacts, interactions, actions = results
    return {"partner": partner, "contacts": contacts, "interactions": interactions, "actions": actions}


async def log_interaction(store: StoreClient, partner_id: str, body: Mapping[str, Any]) -> Record:
    """Create an interaction and move the partner's last contact to its date.

    The partner update is best effort: if it fails the interaction still
    counts as created.
    """
    body = dict(body)
    body["interaction_date"] = body.get("interaction_date") or utcnow_iso()
    interaction = await INTERACTIONS.create(store, body, parent_id=partner_id)
    try:
        await PARTNERS.update(store, partner_id, {"last_contact_at": body["interaction_date"]})
    except (StoreError, ProxyError) as exc:
        log.warning("Failed to update last_contact_at for partner %s: %s", partner_id, exc)
    return interaction


async def partner_stats(store: StoreClient) -> dict[str, Any]:
    partners, active, open_actions = await asyncio.gather(
        _section("Partners", store.select(PARTNERS.table, "id,pipeline_status,last_contact_at")),
        _section("Active partners", store.select(PARTNERS.table, "id", [eq("pipeline_status", "active")])),
        _section("Open action items", store.select(
            ACTION_ITEMS.table, "id,status", [in_("status", ("pending", "overdue"))],
        )),
    )
    overdue = sum(1 for a in open_actions if a.get("status") == "overdue")
    return {
        "totalPartners": len(partners),
        "activePartners": len(active),
        "openActionItems": len(open_actions),
        "overdueActionItems": overdue,
        "avgHealthScore": average_health(partners),
        "pipelineCounts": pipeline_counts(partners),
    }


async def partner_map(store: StoreClient) -> list[Record]:
    return await store.select(
        PARTNERS.table, MAP_COLUMNS,
        [not_null("latitude"), not_null("longitude")], ("name.asc",),
    )


async def sales_funnel(store: StoreClient, params: Mapping[str, Any]) -> PipelineSummary:
    """Monument-company partners bucketed into the sales funnel."""
    filters = [eq("partner_type", FUNNEL_PARTNER_TYPE)]
    for name, column in FUNNEL_FILTERS.items():
        value = params.get(name)
        if value and value != "all":
            filters.append(eq(column, value))
    search = (params.get("search") or "").strip()
    if search:
        filters.append(ilike("name", search))
    rows = await store.select(
        PARTNERS.table, "*", filters, ("pipeline_status.asc", "last_contact_at.desc"), FUNNEL_LIMIT,
    )
    partners = [with_health(r) for r in rows]
    hide = params.get("hideInactiveLost") in (True, "true")
    return aggregate_pipeline(partners, hide_inactive_lost=hide)


# ---------------------------------------------------------------------------
# Kanban
# ---------------------------------------------------------------------------


async def kanban_board(store: StoreClient, board: str | None = None) -> dict[str, Any]:
    """Unarchived tasks, optionally for one board, plus every board.

    A failed board read degrades to no boards; a failed task read raises.
    """
    tasks, boards = await asyncio.gather(
        KANBAN_TASKS.list_rows(store, {"board": board}, extra=(eq("archived", False),)),
        _section("Kanban boards", KANBAN_BOARDS.list_rows(store)),
        return_exceptions=True,
    )
    if isinstance(tasks, BaseException):
        raise tasks
    return {"tasks": tasks, "boards": boards}


# ---------------------------------------------------------------------------
# Crons
# ---------------------------------------------------------------------------


def _iso_from_ms(ms: Any) -> str | None:
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=UTC).isoformat()


def cron_row(job: Mapping[str, Any]) -> Record:
    """Flatten a scheduler job definition into a ``cron_jobs`` row."""
    schedule = job.get("schedule") or {}
    state = job.get("state") or {}
    enabled = job.get("enabled")
    return {
        "id": job.get("id"),
        "name": job.get("name"),
        "enabled": True if enabled is None else enabled,
        "schedule_kind": schedule.get("kind"),
        "schedule_expr": schedule.get("expr"),
        "schedule_every_ms": schedule.get("everyMs"),
        "schedule_tz": schedule.get("tz"),
        "payload_kind": (job.get("payload") or {}).get("kind"),
        "session_target": job.get("sessionTarget"),
        "next_run_at": _iso_from_ms(state.get("nextRunAtMs")),
        "last_run_at": _iso_from_ms(state.get("lastRunAtMs")),
        "last_status": state.get("lastStatus"),
        "last_duration_ms": state.get("lastDurationMs"),
        "raw": dict(job),
        "updated_at": utcnow_iso(),
    }


async def upsert_cron_jobs(store: StoreClient, rows: list[Record]) -> dict[str, Any]:
    await store.upsert(CRON_JOBS.table, rows, on_conflict="id")
    return {"ok": True, "upserted": len(rows)}


# ---------------------------------------------------------------------------
# Sessions & usage
# ---------------------------------------------------------------------------


def _since(column: str, start: datetime | None) -> tuple:
    return (gte(column, start.isoformat()),) if start else ()


async def session_activity(
    store: StoreClient, params: Mapping[str, Any], now: datetime | None = None,
) -> dict[str, Any]:
    """Sessions for the chosen period plus headline counts.

    The session list read raises on failure; each summary read degrades to
    zero on its own.
    """
    now = now or datetime.now(UTC)
    start = period_start(params.get("period"), now)
    today, week = period_start("day", now), period_start("week", now)
    results = await asyncio.gather(
        SESSIONS.list_rows(store, params, extra=_since("last_active_at", start)),
        _section("Active sessions", store.select(SESSIONS.table, "id", [eq("status", "active")])),
        _section("Today's sessions", store.select(SESSIONS.table, "id", _since("last_active_at", today))),
        _section("This week's sessions", store.select(
            SESSIONS.table, "cost_total,total_tokens", _since("last_active_at", week),
        )),
        _section("Subagent sessions", store.select(SESSIONS.table, "id", [eq("kind", "subagent")])),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    sessions, active, today_rows, week_rows, subagents = results
    return {
        "summary": session_summary(active, today_rows, week_rows, subagents),
        "sessions": sessions,
        "liveActivity": live_sessions(sessions),
    }


async def usage_report(
    store: StoreClient, params: Mapping[str, Any], now: datetime | None = None,
) -> dict[str, Any]:
    """Cost and token rollups for the chosen period, with all-time totals."""
    now = now or datetime.now(UTC)
    records = await USAGE.list_rows(
        store, params, extra=_since("recorded_at", period_start(params.get("period"), now)),
    )

    def costs(label: str, start: datetime | None):
        return _section(label, store.select(USAGE.table, "cost_total", _since("recorded_at", start)))

    today, week, month, all_time = await asyncio.gather(
        costs("Today's usage", period_start("day", now)),
        costs("This week's usage", period_start("week", now)),
        costs("This month's usage", period_start("month", now)),
        costs("All-time usage", None),
    )
    return {
        "summary": usage_summary(records),
        "topStats": {
            "today": sum_cost(today),
            "week": sum_cost(week),
            "month": sum_cost(month),
            "allTime": sum_cost(all_time),
        },
        "daily": daily_usage(records, now),
        "recentCalls": records[:RECENT_CALLS],
    }


# ---------------------------------------------------------------------------
# Bible
# ---------------------------------------------------------------------------


async def bible_document(store: StoreClient) -> dict[str, Any]:
    """The shared company document; never raises."""
    try:
        rows = await store.select(DOCUMENTS_TABLE, "content,updated_at", [eq("key", BIBLE_KEY)], limit=1)
    except StoreError as exc:
        log.warning("Bible read failed: %s", exc)
        return {"content": "", "error": exc.message}
    if not rows:
        return {"content": "", "error": "Document not found"}
    return {"content": rows[0].get("content") or "", "lastModified": rows[0].get("updated_at")}


async def request_bible_update(store: StoreClient, request: str) -> dict[str, bool]:
    await BIBLE_UPDATES.create(store, {"request": request})
    return {"ok": True}
