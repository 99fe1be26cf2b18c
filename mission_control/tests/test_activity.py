"""Tests for session and usage rollups."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest

from mission_control.activity import (
    NO_MODEL,
    cost,
    daily_usage,
    live_sessions,
    period_start,
    session_summary,
    usage_summary,
)

NOW = datetime(2026, 3, 15, 18, 30, tzinfo=UTC)


class TestPeriodStart:
    def test_periods_start_at_midnight(self):
        assert period_start("day", NOW) == datetime(2026, 3, 15, tzinfo=UTC)
        assert period_start("week", NOW) == datetime(2026, 3, 8, tzinfo=UTC)
        assert period_start("month", NOW) == datetime(2026, 2, 13, tzinfo=UTC)

    def test_default_is_week(self):
        assert period_start(None, NOW) == period_start("week", NOW)
        assert period_start("", NOW) == period_start("week", NOW)

    def test_all_and_unknown_are_unbounded(self):
        assert period_start("all", NOW) is None
        assert period_start("fortnight", NOW) is None


class TestCost:
    @pytest.mark.parametrize("value,expected", [(1.25, 1.25), ("0.5", 0.5), (None, 0.0), ("n/a", 0.0)])
    def test_cost_parsing(self, value, expected):
        assert cost({"cost_total": value}) == expected


class TestSessionSummary:
    def test_counts_and_week_totals(self):
        week = [{"cost_total": 1, "total_tokens": 10}, {"cost_total": 3, "total_tokens": None}]
        out = session_summary([{}], [{}, {}], week, [{}, {}, {}])
        assert out == {
            "activeNow": 1, "todayCount": 2, "subagentsRun": 3,
            "avgCost": 2, "totalTokensThisWeek": 10, "totalCostThisWeek": 4,
        }

    def test_empty_week(self):
        assert session_summary([], [], [], [])["avgCost"] == 0

    def test_live_sessions(self):
        rows = [{"id": 1, "status": "active"}, {"id": 2, "status": "done"}]
        assert live_sessions(rows) == [{"id": 1, "status": "active"}]


class TestUsageSummary:
    def test_breakdowns(self):
        records = [
            {"provider": "anthropic", "model": "a", "session_kind": "main", "cost_total": 1, "total_tokens": 5},
            {"provider": "anthropic", "model": "a", "session_kind": "main", "cost_total": 1, "total_tokens": 5},
            {"provider": "openai", "model": "b", "cost_total": 3, "total_tokens": 1},
        ]
        out = usage_summary(records)
        assert out["totalCost"] == 5
        assert out["totalTokens"] == 11
        assert out["byProvider"] == {"anthropic": 2, "openai": 3}
        assert out["bySessionKind"] == {"main": 2, "unknown": 3}
        assert out["mostUsedModel"] == "a"
        assert out["mostExpensiveModel"] == "b"
        assert out["avgCostPerCall"] == pytest.approx(5 / 3)

    def test_empty(self):
        out = usage_summary([])
        assert out["totalCalls"] == 0
        assert out["avgCostPerCall"] == 0
        assert out["mostUsedModel"] == NO_MODEL
        assert out["mostExpensiveModel"] == NO_MODEL


class TestDailyUsage:
    def test_zero_filled_oldest_first(self):
        records = [
            {"recorded_at": "2026-03-15T01:00:00+00:00", "cost_total": 0.5, "total_tokens": 7},
            {"recorded_at": "2026-03-13T23:00:00+00:00", "cost_total": 1, "total_tokens": 3},
            {"recorded_at": "2026-01-01T00:00:00+00:00", "cost_total": 9, "total_tokens": 9},
        ]
        days = daily_usage(records, NOW, days=3)
        assert days == [
            {"date": "2026-03-13", "cost": 1, "calls": 1, "tokens": 3},
            {"date": "2026-03-14", "cost": 0, "calls": 0, "tokens": 0},
            {"date": "2026-03-15", "cost": 0.5, "calls": 1, "tokens": 7},
        ]
