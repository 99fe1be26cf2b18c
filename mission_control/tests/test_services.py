"""Tests for the store-backed service functions shared by the API and MCP server."""
from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx
import pytest

from mission_control import services
from mission_control.proxy import NotFound
from mission_control.store import StoreClient, StoreError
from mission_control.tests.fake_store import BASE_URL, FakeStore

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture()
def fake():
    return FakeStore()


class TestPartnerDetail:
    @pytest.mark.asyncio
    async def test_missing_partner_raised_after_child_reads_finish(self):
        finished = []

        async def handler(request: httpx.Request) -> httpx.Response:
            table = request.url.path.rsplit("/", 1)[-1]
            if table != "crm_partners":
                await asyncio.sleep(0.05)
                finished.append(table)
            return httpx.Response(200, json=[])

        store = StoreClient(BASE_URL, "k", transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(NotFound):
                await services.partner_detail(store, "nope")
        finally:
            await store.aclose()
        assert sorted(finished) == ["crm_action_items", "crm_contacts", "crm_interactions"]

    @pytest.mark.asyncio
    async def test_list_ignores_unknown_health_band(self, fake):
        fake.seed(
            "crm_partners",
            {"name": "Fresh", "last_contact_at": datetime.now(UTC).isoformat()},
            {"name": "Never", "last_contact_at": None},
        )
        async with fake.open() as store:
            rows = await services.list_partners(store, {"health": "bogus"})
            critical = await services.list_partners(store, {"health": "critical"})
        assert sorted(r["name"] for r in rows) == ["Fresh", "Never"]
        assert [r["name"] for r in critical] == ["Never"]


class TestKanbanBoard:
    @pytest.fixture()
    def board(self, fake):
        fake.seed(
            "kanban_boards",
            {"name": "ops", "display_order": 2},
            {"name": "dev", "display_order": 1},
        )
        fake.seed(
            "kanban_tasks",
            {"title": "Restock medallions", "board": "ops", "archived": False},
            {"title": "Fix map pins", "board": "dev", "archived": False},
            {"title": "Old chore", "board": "ops", "archived": True},
        )

    @pytest.mark.asyncio
    async def test_unarchived_tasks_and_ordered_boards(self, fake, board):
        async with fake.open() as store:
            out = await services.kanban_board(store)
        assert [t["title"] for t in out["tasks"]] == ["Restock medallions", "Fix map pins"]
        assert [b["name"] for b in out["boards"]] == ["dev", "ops"]

    @pytest.mark.asyncio
    async def test_board_filter(self, fake, board):
        async with fake.open() as store:
            out = await services.kanban_board(store, "ops")
            everything = await services.kanban_board(store, "all")
        assert [t["title"] for t in out["tasks"]] == ["Restock medallions"]
        assert len(everything["tasks"]) == 2

    @pytest.mark.asyncio
    async def test_board_read_failure_degrades(self, fake, board):
        fake.fail("GET", "kanban_boards")
        async with fake.open() as store:
            out = await services.kanban_board(store)
        assert out["boards"] == []
        assert len(out["tasks"]) == 2

    @pytest.mark.asyncio
    async def test_task_read_failure_raises(self, fake, board):
        fake.fail("GET", "kanban_tasks")
        async with fake.open() as store:
            with pytest.raises(StoreError):
                await services.kanban_board(store)


class TestCronRow:
    def test_flattens_job(self):
        job = {
            "id": "digest", "name": "Morning digest",
            "schedule": {"kind": "cron", "expr": "0 7 * * *", "tz": "America/Denver"},
            "payload": {"kind": "agentTurn"}, "sessionTarget": "isolated",
            "state": {"nextRunAtMs": 1773558000000, "lastStatus": "ok", "lastDurationMs": 5300},
        }
        row = services.cron_row(job)
        assert row["enabled"] is True
        assert row["schedule_expr"] == "0 7 * * *"
        assert row["schedule_every_ms"] is None
        assert row["payload_kind"] == "agentTurn"
        assert row["next_run_at"] == "2026-03-15T07:00:00+00:00"
        assert row["last_run_at"] is None
        assert row["raw"] == job

    def test_disabled_job_and_missing_sections(self):
        row = services.cron_row({"id": "x", "name": "x", "enabled": False})
        assert row["enabled"] is False
        assert row["schedule_kind"] is None
        assert row["session_target"] is None

    @pytest.mark.asyncio
    async def test_upsert_merges_by_id(self, fake):
        fake.seed("cron_jobs", {"id": "digest", "name": "Old name"})
        async with fake.open() as store:
            out = await services.upsert_cron_jobs(store, [
                {"id": "digest", "name": "Morning digest"},
                {"id": "backup", "name": "Nightly backup"},
            ])
        assert out == {"ok": True, "upserted": 2}
        assert sorted(r["name"] for r in fake.rows("cron_jobs")) == ["Morning digest", "Nightly backup"]


class TestSessionActivity:
    @pytest.fixture()
    def sessions(self, fake):
        fake.seed(
            "sessions_log",
            {"id": "s1", "kind": "main", "status": "active", "last_active_at": "2026-03-15T10:00:00+00:00",
             "cost_total": 1.5, "total_tokens": 1000},
            {"id": "s2", "kind": "subagent", "status": "done", "last_active_at": "2026-03-12T10:00:00+00:00",
             "cost_total": "0.5", "total_tokens": 200},
            {"id": "s3", "kind": "main", "status": "done", "last_active_at": "2026-01-01T10:00:00+00:00",
             "cost_total": 3, "total_tokens": 5000},
        )

    @pytest.mark.asyncio
    async def test_week_summary(self, fake, sessions):
        async with fake.open() as store:
            out = await services.session_activity(store, {}, now=NOW)
        assert [s["id"] for s in out["sessions"]] == ["s1", "s2"]
        assert [s["id"] for s in out["liveActivity"]] == ["s1"]
        assert out["summary"] == {
            "activeNow": 1, "todayCount": 1, "subagentsRun": 1,
            "avgCost": pytest.approx(1.0), "totalTokensThisWeek": 1200,
            "totalCostThisWeek": pytest.approx(2.0),
        }

    @pytest.mark.asyncio
    async def test_period_and_kind(self, fake, sessions):
        async with fake.open() as store:
            everything = await services.session_activity(store, {"period": "all"}, now=NOW)
            subagents = await services.session_activity(store, {"period": "all", "kind": "subagent"}, now=NOW)
        assert len(everything["sessions"]) == 3
        assert [s["id"] for s in subagents["sessions"]] == ["s2"]

    @pytest.mark.asyncio
    async def test_session_read_failure_raises(self, fake, sessions):
        fake.fail("GET", "sessions_log")
        async with fake.open() as store:
            with pytest.raises(StoreError):
                await services.session_activity(store, {}, now=NOW)


class TestUsageReport:
    @pytest.fixture()
    def usage(self, fake):
        fake.seed(
            "usage_logs",
            {"recorded_at": "2026-03-15T09:00:00+00:00", "provider": "anthropic", "model": "claude-x",
             "session_kind": "main", "cost_total": 0.2, "total_tokens": 100},
            {"recorded_at": "2026-03-14T09:00:00+00:00", "provider": "openai", "model": "gpt-y",
             "session_kind": "subagent", "cost_total": 0.5, "total_tokens": 300},
            {"recorded_at": "2026-03-14T10:00:00+00:00", "provider": "anthropic", "model": "claude-x",
             "session_kind": "main", "cost_total": 0.1, "total_tokens": 50},
            {"recorded_at": "2026-02-20T00:00:00+00:00", "provider": "anthropic", "model": "claude-x",
             "session_kind": "main", "cost_total": 1.0, "total_tokens": 10},
        )

    @pytest.mark.asyncio
    async def test_week_rollup(self, fake, usage):
        async with fake.open() as store:
            out = await services.usage_report(store, {}, now=NOW)
        summary = out["summary"]
        assert summary["totalCalls"] == 3
        assert summary["totalCost"] == pytest.approx(0.8)
        assert summary["totalTokens"] == 450
        assert summary["byProvider"] == {"anthropic": pytest.approx(0.3), "openai": pytest.approx(0.5)}
        assert summary["mostUsedModel"] == "claude-x"
        assert summary["mostExpensiveModel"] == "gpt-y"
        assert out["topStats"] == {
            "today": pytest.approx(0.2), "week": pytest.approx(0.8),
            "month": pytest.approx(1.8), "allTime": pytest.approx(1.8),
        }
        assert len(out["daily"]) == 14
        assert out["daily"][-1]["date"] == "2026-03-15"
        assert out["daily"][-2]["calls"] == 2
        assert out["recentCalls"][0]["recorded_at"].startswith("2026-03-15")

    @pytest.mark.asyncio
    async def test_provider_filter(self, fake, usage):
        async with fake.open() as store:
            out = await services.usage_report(store, {"period": "all", "provider": "openai"}, now=NOW)
        assert out["summary"]["totalCalls"] == 1
        assert out["topStats"]["allTime"] == pytest.approx(1.8)


class TestBible:
    @pytest.mark.asyncio
    async def test_document(self, fake):
        fake.seed("documents", {"key": "pontis-bible", "content": "# Who we are", "updated_at": "2026-03-01"})
        async with fake.open() as store:
            out = await services.bible_document(store)
        assert out == {"content": "# Who we are", "lastModified": "2026-03-01"}

    @pytest.mark.asyncio
    async def test_missing_document(self, fake):
        async with fake.open() as store:
            assert await services.bible_document(store) == {"content": "", "error": "Document not found"}

    @pytest.mark.asyncio
    async def test_read_failure_is_not_raised(self, fake):
        fake.fail("GET", "documents")
        async with fake.open() as store:
            out = await services.bible_document(store)
        assert out["content"] == ""
        assert "documents unavailable" in out["error"]

    @pytest.mark.asyncio
    async def test_update_request_stored(self, fake):
        async with fake.open() as store:
            assert await services.request_bible_update(store, "Add the new pricing") == {"ok": True}
        assert [r["request"] for r in fake.rows("bible_update_requests")] == ["Add the new pricing"]
