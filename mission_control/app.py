from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mission_control import services
from mission_control.auth import require_auth, require_sync_secret
from mission_control.config import get_settings
from mission_control.knowledge import (
    ask_knowledge,
    delete_item,
    knowledge_status,
    list_items,
    search_knowledge,
)
from mission_control.proxy import ProxyError
from mission_control.revenue import revenue_snapshot
from mission_control.schemas import (
    ActionItemCreate,
    ActionItemUpdate,
    AskRequest,
    AskResponse,
    BibleUpdateBody,
    ContactCreate,
    ContactUpdate,
    CronJobsBody,
    DailyTaskCreate,
    DailyTaskUpdate,
    GoalCreate,
    GoalUpdate,
    InteractionCreate,
    InteractionUpdate,
    KanbanTaskCreate,
    KanbanTaskUpdate,
    KnowledgeItemDelete,
    PartnerCreate,
    PartnerStatsOut,
    PartnerUpdate,
    SearchResponse,
    WeekCreate,
    WeekUpdate,
)
from mission_control.services import (
    ACTION_ITEMS,
    CONTACTS,
    CRON_JOBS,
    DAILY_TASKS,
    GOALS,
    INTERACTIONS,
    KANBAN_TASKS,
    PARTNERS,
    WEEKS,
)
from mission_control.store import StoreClient, StoreError, open_store

log = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if not settings.auth_enabled:
        log.warning("MC_BASIC_AUTH_USER/MC_BASIC_AUTH_PASSWORD not set; authentication is disabled")
    if not settings.supabase_url:
        log.warning("SUPABASE_URL not set; store requests will fail")
    yield


app = FastAPI(
    title="Mission Control",
    version=VERSION,
    description=(
        "Internal operations dashboard API: partner CRM, sales funnel, revenue, "
        "quarterly planning and knowledge search. All /api endpoints require "
        "HTTP Basic authentication and return JSON."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Partners", "description": "Partner records with derived health scores."},
        {"name": "Contacts", "description": "People at a partner."},
        {"name": "Interactions", "description": "Logged touches with a partner."},
        {"name": "Actions", "description": "Follow-up items per partner."},
        {"name": "Funnel", "description": "Pipeline stages and aggregate stats."},
        {"name": "Revenue", "description": "Subscription and charge rollups from the payments provider."},
        {"name": "Planning", "description": "Quarterly goals, weekly plans and daily tasks."},
        {"name": "Kanban", "description": "Task boards."},
        {"name": "Activity", "description": "Agent sessions, model usage and cron jobs."},
        {"name": "Bible", "description": "The shared company document and change requests."},
        {"name": "Knowledge", "description": "Knowledge-base search and AI answers."},
        {"name": "Admin", "description": "Operational endpoints."},
    ],
)

api = APIRouter(prefix="/api", dependencies=[Depends(require_auth)])


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


async def store_client() -> AsyncIterator[StoreClient]:
    async with open_store() as store:
        yield store


async def _listing(plural: str, rows: Awaitable[list[dict[str, Any]]]) -> Any:
    """``{plural: rows}``, or ``{error, plural: []}`` with 500 if the read fails."""
    try:
        return {plural: await rows}
    except StoreError as exc:
        log.warning("Listing %s failed: %s", plural, exc)
        return JSONResponse({"error": exc.message, plural: []}, status_code=500)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ())]
    if len(loc) > 1 and loc[0] in ("body", "query", "path"):
        loc = loc[1:]
    name = ".".join(loc) or "request"
    if first.get("type") == "missing":
        return f"{name} required"
    return f"{name}: {first.get('msg', 'invalid value')}"


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": _validation_message(exc)}, status_code=400)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(ProxyError)
async def proxy_error(request: Request, exc: ProxyError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(StoreError)
async def store_error(request: Request, exc: StoreError):
    log.warning("%s %s failed: store answered %s: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse({"error": exc.message}, status_code=500)


# ---------------------------------------------------------------------------
# Routes: Partners (stats before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@api.get("/partners", tags=["Partners"], summary="List partners with filtering and recomputed health")
async def list_partners(
    status: str | None = Query(None, description="Pipeline stage, or 'all'"),
    health: str | None = Query(None, description="healthy, warning, critical, or 'all'"),
    search: str | None = Query(None, description="Case-insensitive substring of the partner name"),
    assignee: str | None = Query(None, description="next_action_assignee, or 'all'"),
    partner_type: str | None = Query(None, alias="partnerType", description="Partner type, or 'all'"),
    store: StoreClient = Depends(store_client),
):
    params = {
        "status": status, "health": health, "search": search,
        "assignee": assignee, "partnerType": partner_type,
    }
    return await _listing("partners", services.list_partners(store, params))


@api.post("/partners", status_code=201, tags=["Partners"], summary="Create a partner")
async def create_partner(body: PartnerCreate, store: StoreClient = Depends(store_client)):
    return {"partner": await PARTNERS.create(store, body.payload())}


@api.get("/partners/stats", response_model=PartnerStatsOut,
         tags=["Partners"], summary="Partner totals, action item counts and average health")
async def get_partner_stats(store: StoreClient = Depends(store_client)):
    return await services.partner_stats(store)


@api.get("/partners/{partner_id}", tags=["Partners"],
         summary="Partner detail with contacts, interactions and action items")
async def get_partner(partner_id: str, store: StoreClient = Depends(store_client)):
    return await services.partner_detail(store, partner_id)


@api.patch("/partners/{partner_id}", tags=["Partners"], summary="Update partner fields")
async def update_partner(partner_id: str, body: PartnerUpdate, store: StoreClient = Depends(store_client)):
    return {"partner": await PARTNERS.update(store, partner_id, body.payload())}


@api.delete("/partners/{partner_id}", tags=["Partners"], summary="Delete a partner")
async def delete_partner(partner_id: str, store: StoreClient = Depends(store_client)):
    return await PARTNERS.delete(store, partner_id)


@api.get("/partner-map", tags=["Partners"], summary="Partners that have map coordinates")
async def partner_map(store: StoreClient = Depends(store_client)):
    return await _listing("partners", services.partner_map(store))


# ---------------------------------------------------------------------------
# Routes: Contacts
# ---------------------------------------------------------------------------


@api.get("/partners/{partner_id}/contacts", tags=["Contacts"], summary="List a partner's contacts")
async def list_contacts(partner_id: str, store: StoreClient = Depends(store_client)):
    return await _listing("contacts", CONTACTS.list_rows(store, parent_id=partner_id))


@api.post("/partners/{partner_id}/contacts", status_code=201, tags=["Contacts"], summary="Add a contact")
async def create_contact(partner_id: str, body: ContactCreate, store: StoreClient = Depends(store_client)):
    return {"contact": await CONTACTS.create(store, body.payload(), parent_id=partner_id)}


@api.patch("/partners/{partner_id}/contacts", tags=["Contacts"], summary="Update a contact (id in body as contactId)")
async def update_contact(partner_id: str, body: ContactUpdate, store: StoreClient = Depends(store_client)):
    contact = await CONTACTS.update(store, body.contact_id, body.payload(), parent_id=partner_id)
    return {"contact": contact}


@api.delete("/partners/{partner_id}/contacts", tags=["Contacts"], summary="Delete a contact")
async def delete_contact(
    partner_id: str,
    contact_id: str = Query(..., alias="contactId"),
    store: StoreClient = Depends(store_client),
):
    return await CONTACTS.delete(store, contact_id, parent_id=partner_id)


# ---------------------------------------------------------------------------
# Routes: Interactions
# ---------------------------------------------------------------------------


@api.get("/partners/{partner_id}/interactions", tags=["Interactions"], summary="List a partner's interactions")
async def list_interactions(partner_id: str, store: StoreClient = Depends(store_client)):
    return await _listing("interactions", INTERACTIONS.list_rows(store, parent_id=partner_id))


@api.post("/partners/{partner_id}/interactions", status_code=201, tags=["Interactions"],
          summary="Log an interaction and refresh the partner's last contact")
async def create_interaction(partner_id: str, body: InteractionCreate, store: StoreClient = Depends(store_client)):
    return {"interaction": await services.log_interaction(store, partner_id, body.payload())}


@api.patch("/partners/{partner_id}/interactions", tags=["Interactions"],
           summary="Update an interaction (id in body as interactionId)")
async def update_interaction(partner_id: str, body: InteractionUpdate, store: StoreClient = Depends(store_client)):
    interaction = await INTERACTIONS.update(store, body.interaction_id, body.payload(), parent_id=partner_id)
    return {"interaction": interaction}


@api.delete("/partners/{partner_id}/interactions", tags=["Interactions"], summary="Delete an interaction")
async def delete_interaction(
    partner_id: str,
    interaction_id: str = Query(..., alias="interactionId"),
    store: StoreClient = Depends(store_client),
):
    return await INTERACTIONS.delete(store, interaction_id, parent_id=partner_id)


# ---------------------------------------------------------------------------
# Routes: Action items
# ---------------------------------------------------------------------------


@api.get("/partners/{partner_id}/actions", tags=["Actions"], summary="List a partner's action items")
async def list_actions(partner_id: str, store: StoreClient = Depends(store_client)):
    return await _listing("actions", ACTION_ITEMS.list_rows(store, parent_id=partner_id))


@api.post("/partners/{partner_id}/actions", status_code=201, tags=["Actions"], summary="Add a pending action item")
async def create_action(partner_id: str, body: ActionItemCreate, store: StoreClient = Depends(store_client)):
    return {"action": await ACTION_ITEMS.create(store, body.payload(), parent_id=partner_id)}


@api.patch("/partners/{partner_id}/actions", tags=["Actions"], summary="Update an action item (id in body)")
async def update_action(partner_id: str, body: ActionItemUpdate, store: StoreClient = Depends(store_client)):
    return {"action": await ACTION_ITEMS.update(store, body.id, body.payload(), parent_id=partner_id)}


# ---------------------------------------------------------------------------
# Routes: Sales funnel & Revenue
# ---------------------------------------------------------------------------


@api.get("/sales-funnel", tags=["Funnel"], summary="Monument-company partners bucketed by pipeline stage")
async def sales_funnel(
    search: str | None = Query(None, description="Case-insensitive substring of the partner name"),
    state: str | None = Query(None, description="State, or 'all'"),
    territory: str | None = Query(None, description="Territory, or 'all'"),
    hide_inactive_lost: str | None = Query(
        None, alias="hideInactiveLost", description="'true' drops inactive and lost partners",
    ),
    store: StoreClient = Depends(store_client),
):
    params = {"search": search, "state": state, "territory": territory, "hideInactiveLost": hide_inactive_lost}
    try:
        summary = await services.sales_funnel(store, params)
    except StoreError as exc:
        log.warning("Sales funnel read failed: %s", exc)
        return JSONResponse({"error": exc.message, "partners": [], "stages": {}}, status_code=500)
    return summary.as_dict()


@api.get("/stripe", tags=["Revenue"], summary="MRR, revenue history and customers")
async def stripe_revenue():
    return await revenue_snapshot(get_settings().stripe_secret_key)


# ---------------------------------------------------------------------------
# Routes: Planning
# ---------------------------------------------------------------------------


@api.get("/planning/goals", tags=["Planning"], summary="List quarterly goals")
async def list_goals(
    quarter: str | None = Query(None, description="e.g. 2026-Q1"),
    store: StoreClient = Depends(store_client),
):
    return await _listing("goals", GOALS.list_rows(store, {"quarter": quarter}))


@api.post("/planning/goals", status_code=201, tags=["Planning"], summary="Create a goal")
async def create_goal(body: GoalCreate, store: StoreClient = Depends(store_client)):
    return {"goal": await GOALS.create(store, body.payload())}


@api.get("/planning/goals/{goal_id}", tags=["Planning"], summary="Get one goal")
async def get_goal(goal_id: str, store: StoreClient = Depends(store_client)):
    return {"goal": await GOALS.get(store, goal_id)}


@api.patch("/planning/goals/{goal_id}", tags=["Planning"], summary="Update a goal")
async def update_goal(goal_id: str, body: GoalUpdate, store: StoreClient = Depends(store_client)):
    return {"goal": await GOALS.update(store, goal_id, body.payload())}


@api.delete("/planning/goals/{goal_id}", tags=["Planning"], summary="Delete a goal")
async def delete_goal(goal_id: str, store: StoreClient = Depends(store_client)):
    return await GOALS.delete(store, goal_id)


@api.get("/planning/weeks", tags=["Planning"], summary="List weekly plans")
async def list_weeks(
    quarter: str | None = Query(None, description="e.g. 2026-Q1"),
    store: StoreClient = Depends(store_client),
):
    return await _listing("weeks", WEEKS.list_rows(store, {"quarter": quarter}))


@api.post("/planning/weeks", status_code=201, tags=["Planning"], summary="Create a weekly plan")
async def create_week(body: WeekCreate, store: StoreClient = Depends(store_client)):
    return {"week": await WEEKS.create(store, body.payload())}


@api.get("/planning/weeks/{week_id}", tags=["Planning"], summary="Get one weekly plan")
async def get_week(week_id: str, store: StoreClient = Depends(store_client)):
    return {"week": await WEEKS.get(store, week_id)}


@api.patch("/planning/weeks/{week_id}", tags=["Planning"], summary="Update a weekly plan")
async def update_week(week_id: str, body: WeekUpdate, store: StoreClient = Depends(store_client)):
    return {"week": await WEEKS.update(store, week_id, body.payload())}


@api.delete("/planning/weeks/{week_id}", tags=["Planning"], summary="Delete a weekly plan")
async def delete_week(week_id: str, store: StoreClient = Depends(store_client)):
    return await WEEKS.delete(store, week_id)


@api.get("/planning/daily", tags=["Planning"], summary="List daily tasks")
async def list_daily_tasks(
    date: str | None = Query(None, description="YYYY-MM-DD"),
    owner: str | None = Query(None),
    week_id: str | None = Query(None),
    store: StoreClient = Depends(store_client),
):
    params = {"date": date, "owner": owner, "week_id": week_id}
    return await _listing("tasks", DAILY_TASKS.list_rows(store, params))


@api.post("/planning/daily", status_code=201, tags=["Planning"], summary="Create a daily task")
async def create_daily_task(body: DailyTaskCreate, store: StoreClient = Depends(store_client)):
    return {"task": await DAILY_TASKS.create(store, body.payload())}


@api.patch("/planning/daily/{task_id}", tags=["Planning"],
           summary="Update a daily task (status 'done' stamps completed_at)")
async def update_daily_task(task_id: str, body: DailyTaskUpdate, store: StoreClient = Depends(store_client)):
    return {"task": await DAILY_TASKS.update(store, task_id, body.payload())}


@api.delete("/planning/daily/{task_id}", tags=["Planning"], summary="Delete a daily task")
async def delete_daily_task(task_id: str, store: StoreClient = Depends(store_client)):
    return await DAILY_TASKS.delete(store, task_id)


# ---------------------------------------------------------------------------
# Routes: Kanban
# ---------------------------------------------------------------------------


@api.get("/kanban", tags=["Kanban"], summary="Unarchived tasks and the board list")
async def kanban(
    board: str | None = Query(None, description="Board name, or 'all'"),
    store: StoreClient = Depends(store_client),
):
    try:
        return await services.kanban_board(store, board)
    except StoreError as exc:
        log.warning("Kanban read failed: %s", exc)
        return JSONResponse({"error": exc.message, "tasks": [], "boards": []}, status_code=500)


@api.post("/kanban", tags=["Kanban"], summary="Add a task (backlog, medium priority unless given)")
async def create_kanban_task(body: KanbanTaskCreate, store: StoreClient = Depends(store_client)):
    return {"task": await KANBAN_TASKS.create(store, body.payload())}


@api.patch("/kanban", tags=["Kanban"], summary="Update or archive a task (id in body)")
async def update_kanban_task(body: KanbanTaskUpdate, store: StoreClient = Depends(store_client)):
    return {"task": await KANBAN_TASKS.update(store, body.id, body.payload())}


# ---------------------------------------------------------------------------
# Routes: Activity
# ---------------------------------------------------------------------------


@api.get("/sessions", tags=["Activity"], summary="Agent sessions for a period with headline counts")
async def sessions(
    period: str | None = Query(None, description="day, week (default), month or all"),
    kind: str | None = Query(None, description="Session kind, or 'all'"),
    status: str | None = Query(None, description="Session status, or 'all'"),
    store: StoreClient = Depends(store_client),
):
    params = {"period": period, "kind": kind, "status": status}
    try:
        return await services.session_activity(store, params)
    except StoreError as exc:
        log.warning("Session read failed: %s", exc)
        return JSONResponse({"error": exc.message, "sessions": [], "summary": {}}, status_code=500)


@api.get("/usage", tags=["Activity"], summary="Model usage cost and token rollups")
async def usage(
    period: str | None = Query(None, description="day, week (default), month or all"),
    provider: str | None = Query(None),
    model: str | None = Query(None),
    session_kind: str | None = Query(None, alias="sessionKind"),
    store: StoreClient = Depends(store_client),
):
    params = {"period": period, "provider": provider, "model": model, "sessionKind": session_kind}
    return await services.usage_report(store, params)


@api.get("/crons", tags=["Activity"], summary="Scheduled jobs")
async def list_crons(store: StoreClient = Depends(store_client)):
    return await _listing("jobs", CRON_JOBS.list_rows(store))


@api.post("/crons", tags=["Activity"], summary="Upsert cron job rows by id")
async def upsert_crons(body: CronJobsBody, store: StoreClient = Depends(store_client)):
    return await services.upsert_cron_jobs(store, body.jobs)


@api.post("/crons/sync", tags=["Activity"], dependencies=[Depends(require_sync_secret)],
          summary="Replace cron rows from scheduler job definitions (needs X-Sync-Secret)")
async def sync_crons(body: CronJobsBody, store: StoreClient = Depends(store_client)):
    return await services.upsert_cron_jobs(store, [services.cron_row(job) for job in body.jobs])


# ---------------------------------------------------------------------------
# Routes: Bible
# ---------------------------------------------------------------------------


@api.get("/bible", tags=["Bible"], summary="The shared company document")
async def bible(store: StoreClient = Depends(store_client)):
    return await services.bible_document(store)


@api.post("/bible-update", tags=["Bible"], summary="Queue a change request for the document")
async def bible_update(body: BibleUpdateBody, store: StoreClient = Depends(store_client)):
    try:
        return await services.request_bible_update(store, body.request)
    except StoreError as exc:
        log.warning("Bible update request failed: %s", exc)
        return JSONResponse({"ok": False, "error": exc.message}, status_code=500)


# ---------------------------------------------------------------------------
# Routes: Knowledge
# ---------------------------------------------------------------------------


@api.get("/knowledge/search", response_model=SearchResponse,
         tags=["Knowledge"], summary="Semantic search with text fallback")
async def knowledge_search(
    q: str = Query("", description="Query; empty lists the newest items"),
    item_type: str = Query("", alias="type", description="Restrict to one item type"),
    limit: str | None = Query(None, description="Max results (capped at 50)"),
    store: StoreClient = Depends(store_client),
):
    return await search_knowledge(store, q, item_type, limit, get_settings().jina_api_key)


@api.post("/knowledge/ask", response_model=AskResponse,
          tags=["Knowledge"], summary="Answer a question from the knowledge base")
async def knowledge_ask(body: AskRequest, store: StoreClient = Depends(store_client)):
    return await ask_knowledge(store, body.question, get_settings().jina_api_key)


@api.get("/knowledge/ask", tags=["Knowledge"], summary="Knowledge base item count")
async def knowledge_ask_status(store: StoreClient = Depends(store_client)):
    return await knowledge_status(store)


@api.get("/knowledge/items", tags=["Knowledge"], summary="Newest knowledge items")
async def knowledge_items(
    limit: str | None = Query(None, description="Max items (default 50)"),
    store: StoreClient = Depends(store_client),
):
    return await list_items(store, limit)


@api.delete("/knowledge/items", tags=["Knowledge"], summary="Delete a knowledge item (id in body)")
async def delete_knowledge_item(body: KnowledgeItemDelete, store: StoreClient = Depends(store_client)):
    return await delete_item(store, body.id)


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Admin"], summary="Liveness probe (no authentication)")
async def health():
    return {"status": "ok", "service": "mission-control", "version": VERSION}


app.include_router(api)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("mission_control.app:app", host="127.0.0.1", port=8001)


if __name__ == "__main__":
    main()
