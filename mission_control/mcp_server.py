from __future__ import annotations

import json
import logging

from mcp.server.fastmcp import FastMCP

from mission_control import services
from mission_control.pipeline import ACTIVE_PIPELINE_STAGES, PIPELINE_STAGES, UNIT_PRICE
from mission_control.proxy import ProxyError
from mission_control.store import StoreError, open_store

log = logging.getLogger(__name__)


mcp = FastMCP(
    "Mission Control",
    instructions=(
        "Mission Control is the partner CRM behind the Pontis operations dashboard. "
        "Start with partner_stats() for an overview, then list_partners() or "
        "sales_funnel() to browse, then get_partner(id) for full details. "
        "Use log_interaction() after every call, email or visit."
    ),
    json_response=True,
)


def _error(exc: StoreError | ProxyError) -> dict:
    return {"error": exc.message}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("mission-control://overview")
def overview() -> str:
    """Data model, pipeline stages and health scoring rules."""
    return json.dumps({
        "system": "Mission Control: partner CRM for monument companies",
        "data_model": {
            "partner": "A monument company or other reseller. Has contacts, interactions and action items.",
            "contact": "A person at a partner.",
            "interaction": "A logged call, email, visit or meeting. Logging one refreshes the partner's last contact.",
            "action_item": "A follow-up with a due date and priority.",
        },
        "pipeline_stages": list(PIPELINE_STAGES),
        "active_pipeline": list(ACTIVE_PIPELINE_STAGES),
        "health_score": "100 if contacted within 7 days, 70 within 14, 40 within 30, else 10 (never contacted: 10).",
        "health_bands": {"healthy": "> 70", "warning": "40 to 70", "critical": "< 40"},
        "pipeline_value": f"active pipeline count x average units ordered by active partners x {UNIT_PRICE}",
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def partner_stats() -> dict:
    """Totals, open and overdue action items, average health and per-stage counts."""
    async with open_store() as store:
        return await services.partner_stats(store)


@mcp.tool()
async def list_partners(
    status: str | None = None, health: str | None = None,
    search: str | None = None, assignee: str | None = None,
    partner_type: str | None = None,
) -> list[dict] | dict:
    """List partners with their current health score.

    Args:
        status: Pipeline stage (prospect, warm, demo_scheduled, demo_done,
                negotiating, active, inactive, lost).
        health: healthy, warning or critical.
        search: Case-insensitive substring of the partner name.
        assignee: Person owning the next action.
        partner_type: e.g. monument_company.
    """
    params = {
        "status": status, "health": health, "search": search,
        "assignee": assignee, "partnerType": partner_type,
    }
    async with open_store() as store:
        try:
            return await services.list_partners(store, params)
        except StoreError as exc:
            return _error(exc)


@mcp.tool()
async def get_partner(partner_id: str) -> dict:
    """Partner record with contacts, recent interactions and action items."""
    async with open_store() as store:
        try:
            return await services.partner_detail(store, partner_id)
        except (StoreError, ProxyError) as exc:
            return _error(exc)


@mcp.tool()
async def sales_funnel(
    search: str | None = None, state: str | None = None,
    territory: str | None = None, hide_inactive_lost: bool = False,
) -> dict:
    """Monument-company partners grouped by pipeline stage, with funnel stats."""
    params = {"search": search, "state": state, "territory": territory, "hideInactiveLost": hide_inactive_lost}
    async with open_store() as store:
        try:
            summary = await services.sales_funnel(store, params)
        except StoreError as exc:
            return _error(exc)
    return summary.as_dict()


@mcp.tool()
async def log_interaction(
    partner_id: str, type: str, summary: str,
    direction: str | None = None, outcome: str | None = None,
    logged_by: str | None = None, interaction_date: str | None = None,
) -> dict:
    """Record a call, email, visit or meeting with a partner.

    Args:
        partner_id: Partner UUID.
        type: call, email, visit, meeting or note.
        summary: What happened, one or two sentences.
        direction: inbound or outbound.
        interaction_date: ISO timestamp; defaults to now.
    """
    body = {
        "type": type, "summary": summary, "direction": direction, "outcome": outcome,
        "logged_by": logged_by, "interaction_date": interaction_date,
    }
    async with open_store() as store:
        try:
            return await services.log_interaction(store, partner_id, body)
        except (StoreError, ProxyError) as exc:
            return _error(exc)


def main():
    """Run the Mission Control MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
