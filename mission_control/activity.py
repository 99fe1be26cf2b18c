"""Agent session and model usage rollups.

Session snapshots (``sessions_log``) and per-call usage records
(``usage_logs``) are pushed into the store by collectors outside this
service. The functions here only summarize rows that were already read.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import UTC, datetime, timedelta
from typing import Any

DEFAULT_PERIOD = "week"
# days back from today's midnight; "all" and unknown periods have no start
PERIOD_DAYS = {"day": 0, "week": 7, "month": 30}

DAILY_DAYS = 14
RECENT_CALLS = 50
NO_MODEL = "—"


def period_start(period: str | None, now: datetime | None = None) -> datetime | None:
    days = PERIOD_DAYS.get(period or DEFAULT_PERIOD)
    if days is None:
        return None
    now = now or datetime.now(UTC)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=days)


def cost(row: dict[str, Any]) -> float:
    """``cost_total`` as a float; numeric strings are accepted, junk counts as 0."""
    try:
        return float(row.get("cost_total") or 0)
    except (TypeError, ValueError):
        return 0.0


def tokens(row: dict[str, Any]) -> int:
    return row.get("total_tokens") or 0


def sum_cost(rows: list[dict[str, Any]]) -> float:
    return sum(cost(r) for r in rows)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def session_summary(
    active: list[dict[str, Any]],
    today: list[dict[str, Any]],
    week: list[dict[str, Any]],
    subagents: list[dict[str, Any]],
) -> dict[str, Any]:
    week_cost = sum_cost(week)
    return {
        "activeNow": len(active),
        "todayCount": len(today),
        "subagentsRun": len(subagents),
        "avgCost": week_cost / len(week) if week else 0,
        "totalTokensThisWeek": sum(tokens(r) for r in week),
        "totalCostThisWeek": week_cost,
    }


def live_sessions(sessions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [s for s in sessions if s.get("status") == "active"]


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


def _top(totals: dict[str, float]) -> str:
    # first key wins a tie
    return max(totals, key=totals.__getitem__) if totals else NO_MODEL


def usage_summary(records: list[dict[str, Any]]) -> dict[str, Any]:
    by_provider: dict[str, float] = defaultdict(float)
    by_model: dict[str, float] = defaultdict(float)
    by_kind: dict[str, float] = defaultdict(float)
    model_calls: Counter[str] = Counter()
    total_cost = 0.0
    for r in records:
        c = cost(r)
        total_cost += c
        model = r.get("model") or "unknown"
        by_provider[r.get("provider") or "unknown"] += c
        by_model[model] += c
        by_kind[r.get("session_kind") or "unknown"] += c
        model_calls[model] += 1
    calls = len(records)
    return {
        "totalCost": total_cost,
        "totalCalls": calls,
        "totalTokens": sum(tokens(r) for r in records),
        "byProvider": dict(by_provider),
        "byModel": dict(by_model),
        "bySessionKind": dict(by_kind),
        "mostUsedModel": _top(dict(model_calls)),
        "mostExpensiveModel": _top(by_model),
        "avgCostPerCall": total_cost / calls if calls else 0,
    }


def daily_usage(
    records: list[dict[str, Any]], now: datetime | None = None, days: int = DAILY_DAYS,
) -> list[dict[str, Any]]:
    """Cost, calls and tokens per UTC day for the last ``days`` days, oldest first.

    Days without records are present with zeros.
    """
    now = now or datetime.now(UTC)
    buckets: dict[str, dict[str, float]] = defaultdict(lambda: {"cost": 0, "calls": 0, "tokens": 0})
    for r in records:
        day = buckets[str(r.get("recorded_at") or "")[:10]]
        day["cost"] += cost(r)
        day["calls"] += 1
        day["tokens"] += tokens(r)
    out = []
    for back in range(days - 1, -1, -1):
        key = (now - timedelta(days=back)).date().isoformat()
        day = buckets.get(key, {"cost": 0, "calls": 0, "tokens": 0})
        out.append({"date": key, **day})
    return out
