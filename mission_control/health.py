"""Partner health engine.

A partner's ``health_score`` is derived purely from how long ago we last
talked to them. It is never read back from storage: every list, detail and
write response recomputes it through :func:`with_health`.

========================  =====
Age of last contact       Score
========================  =====
never contacted           10
< 7 days                  100
7 days up to < 14 days    70
14 days up to < 30 days   40
30 days or more           10
========================  =====

Age is the exact millisecond difference divided by 86,400,000. There is no
calendar or timezone rounding, so a contact exactly 7.000 days old scores 70.
"""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

MS_PER_DAY = 86_400_000

# (exclusive upper bound in days, score), checked in order
HEALTH_THRESHOLDS: tuple[tuple[int, int], ...] = ((7, 100), (14, 70), (30, 40))
STALE_SCORE = 10

HEALTH_BANDS = ("healthy", "warning", "critical")


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Coerce a stored timestamp to an aware UTC datetime.

    Naive values are taken to be UTC. Anything unparseable yields ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def age_in_days(last_contact_at: datetime, now: datetime) -> float:
    delta = now - last_contact_at
    # timedelta keeps microseconds; truncate to whole milliseconds
    ms = (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000
    return ms / MS_PER_DAY


def health_score(last_contact_at: datetime | str | None, now: datetime | None = None) -> int:
    """Map a last-contact timestamp to one of 10, 40, 70 or 100."""
    contacted = parse_timestamp(last_contact_at)
    if contacted is None:
        return STALE_SCORE
    now = parse_timestamp(now) or datetime.now(UTC)
    days = age_in_days(contacted, now)
    for bound, score in HEALTH_THRESHOLDS:
        if days < bound:
            return score
    return STALE_SCORE


def health_band(score: int) -> str:
    if score > 70:
        return "healthy"
    if score >= 40:
        return "warning"
    return "critical"


def with_health(record: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Return a copy of a partner row carrying a freshly computed health_score."""
    return {**record, "health_score": health_score(record.get("last_contact_at"), now)}


def average_health(records: list[dict[str, Any]], now: datetime | None = None) -> int:
    """Mean health across partners, rounded half up; 0 for an empty list."""
    if not records:
        return 0
    total = sum(health_score(r.get("last_contact_at"), now) for r in records)
    return int(total / len(records) + 0.5)
