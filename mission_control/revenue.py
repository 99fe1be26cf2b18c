"""Recurring and historical revenue rollups from the payments provider."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

import stripe

log = logging.getLogger(__name__)

LIST_LIMIT = 100
HISTORY_DAYS = 180
HISTORY_MONTHS = 6


class RevenueError(Exception):
    """The payments provider could not be queried."""


def empty_revenue(error: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "mrr": 0,
        "totalRevenue": 0,
        "activeSubscriptions": 0,
        "customerCount": 0,
        "monthlyRevenue": [],
        "customers": [],
    }
    if error is not None:
        payload["error"] = error
    return payload


def _cents(amount: Any) -> float:
    return (amount or 0) / 100


def monthly_recurring_revenue(subscriptions: list[Any]) -> float:
    """Monthly prices count times quantity; yearly prices count a twelfth."""
    mrr = 0.0
    for sub in subscriptions:
        for item in sub["items"]["data"]:
            price = item["price"]
            amount = _cents(price.get("unit_amount"))
            interval = (price.get("recurring") or {}).get("interval")
            if interval == "year":
                mrr += amount / 12
            elif interval == "month":
                mrr += amount * (item.get("quantity") or 1)
    return mrr


def _month_key(dt: datetime) -> str:
    return f"{dt.year}-{dt.month:02d}"


def trailing_months(now: datetime, count: int = HISTORY_MONTHS) -> list[tuple[str, str]]:
    """(key, label) pairs for the last ``count`` months, oldest first."""
    months = []
    for back in range(count - 1, -1, -1):
        year, month = divmod(now.year * 12 + now.month - 1 - back, 12)
        first = datetime(year, month + 1, 1, tzinfo=UTC)
        months.append((_month_key(first), first.strftime("%b %y")))
    return months


def revenue_by_month(charges: list[Any], now: datetime) -> tuple[list[dict[str, Any]], float]:
    totals: dict[str, float] = defaultdict(float)
    total = 0.0
    for charge in charges:
        if charge.get("status") != "succeeded":
            continue
        amount = _cents(charge.get("amount"))
        created = datetime.fromtimestamp(charge["created"], tz=UTC)
        totals[_month_key(created)] += amount
        total += amount
    months = [
        {"key": key, "label": label, "revenue": totals.get(key, 0)}
        for key, label in trailing_months(now)
    ]
    return months, total


def summarize_revenue(
    customers: list[Any], subscriptions: list[Any], charges: list[Any], now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(UTC)
    months, total = revenue_by_month(charges, now)
    status_by_customer = {s.get("customer"): s.get("status") for s in subscriptions}
    return {
        "mrr": round(monthly_recurring_revenue(subscriptions), 2),
        "totalRevenue": round(total, 2),
        "activeSubscriptions": len(subscriptions),
        "customerCount": len(customers),
        "monthlyRevenue": months,
        "customers": [
            {
                "id": c["id"],
                "name": c.get("name") or "—",
                "email": c.get("email") or "—",
                "created": c.get("created"),
                "subscriptionStatus": status_by_customer.get(c["id"]) or "none",
            }
            for c in customers
        ],
    }


def fetch_revenue(api_key: str, now: datetime | None = None) -> dict[str, Any]:
    """Blocking: query customers, active subscriptions and recent charges."""
    if not api_key:
        raise RevenueError("STRIPE_SECRET_KEY is not configured")
    since = int(time.time()) - 60 * 60 * 24 * HISTORY_DAYS
    try:
        customers = stripe.Customer.list(limit=LIST_LIMIT, api_key=api_key)
        subscriptions = stripe.Subscription.list(limit=LIST_LIMIT, status="active", api_key=api_key)
        charges = stripe.Charge.list(limit=LIST_LIMIT, created={"gte": since}, api_key=api_key)
    except stripe.StripeError as exc:
        raise RevenueError(str(exc)) from exc
    return summarize_revenue(customers["data"], subscriptions["data"], charges["data"], now)


async def revenue_snapshot(api_key: str) -> dict[str, Any]:
    """Revenue payload for the dashboard; never raises."""
    try:
        return await asyncio.to_thread(fetch_revenue, api_key)
    except RevenueError as exc:
        log.warning("Revenue lookup failed: %s", exc)
        return empty_revenue(str(exc))
    except Exception as exc:
        log.exception("Revenue rollup failed on an unexpected provider response")
        return empty_revenue(str(exc) or type(exc).__name__)
