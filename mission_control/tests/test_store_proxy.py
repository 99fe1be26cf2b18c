"""Tests for filter rendering, the store client and the record proxy layer."""
from __future__ import annotations

import httpx
import pytest

from mission_control.proxy import BadRequest, Collection, NotFound
from mission_control.store import StoreClient, StoreError, any_ilike, eq, gte, ilike, in_, not_null
from mission_control.tests.fake_store import BASE_URL, FakeStore

THINGS = Collection(
    table="things", plural="things", singular="thing", label="Thing",
    order=("created_at.desc",), limit=10,
    filters={"status": "status", "owner": "owner_name"},
    search_field="name",
    required=("name",),
    defaults={"status": "new", "tags": [], "owner_name": None},
    fixed={"source": "api"},
    updatable=("name", "status"),
    stamp_updated_at=True,
)

CHILDREN = Collection(
    table="children", plural="children", singular="child",
    parent_key="thing_id", required=("name",), updatable=("name",),
)


class TestFilters:
    def test_eq(self):
        assert eq("pipeline_status", "active").param() == ("pipeline_status", "eq.active")
        assert eq("archived", False).param() == ("archived", "eq.false")

    def test_ilike_wraps_wildcards(self):
        assert ilike("name", "acme").param() == ("name", "ilike.%acme%")

    def test_gte(self):
        assert gte("recorded_at", "2026-03-08").param() == ("recorded_at", "gte.2026-03-08")

    def test_not_null(self):
        assert not_null("latitude").param() == ("latitude", "not.is.null")

    def test_in_quotes_values(self):
        assert in_("status", ["pending", "overdue"]).param() == ("status", 'in.("pending","overdue")')

    def test_any_ilike_escapes_quotes(self):
        key, expr = any_ilike(["title", "summary"], 'say "hi"').param()
        assert key == "or"
        assert expr == '(title.ilike."%say \\"hi\\"%",summary.ilike."%say \\"hi\\"%")'


class TestStoreClient:
    @pytest.mark.asyncio
    async def test_sends_credentials_and_query(self):
        fake = FakeStore()
        fake.seed("things", {"name": "a", "status": "new"})
        async with fake.open() as store:
            rows = await store.select("things", "id,name", [eq("status", "new")], ("name.asc",), 5)
        assert [r["name"] for r in rows] == ["a"]
        request = fake.requests[0]
        assert request.headers["apikey"] == "test-key"
        assert request.headers["authorization"] == "Bearer test-key"
        assert request.url.params["select"] == "id,name"
        assert request.url.params["order"] == "name.asc"
        assert request.url.params["limit"] == "5"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        fake = FakeStore()
        fake.fail("GET", "things")
        async with fake.open() as store:
            with pytest.raises(StoreError) as exc_info:
                await store.select("things")
        assert exc_info.value.status_code == 500
        assert "things unavailable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_failure_is_store_error(self):
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = StoreClient(BASE_URL, "k", transport=httpx.MockTransport(boom))
        try:
            with pytest.raises(StoreError) as exc_info:
                await store.select("things")
        finally:
            await store.aclose()
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_non_json_success_is_store_error(self):
        fake = FakeStore()
        fake.garble("GET", "things")
        async with fake.open() as store:
            with pytest.raises(StoreError) as exc_info:
                await store.select("things")
        assert exc_info.value.status_code == 502
        assert "unreadable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_write_prefer_headers(self):
        fake = FakeStore()
        async with fake.open() as store:
            await store.insert("things", {"name": "a"})
            await store.upsert("things", [{"name": "a", "status": "x"}], on_conflict="name")
            await store.delete("things", [eq("name", "a")])
        insert, upsert, delete = fake.requests
        assert insert.headers["prefer"] == "return=representation"
        assert upsert.headers["prefer"] == "resolution=merge-duplicates,return=representation"
        assert upsert.url.params["on_conflict"] == "name"
        assert delete.headers["prefer"] == "return=minimal"
        assert fake.rows("things") == []


class TestCollection:
    def test_query_filters_allowlist(self):
        params = {"status": "open", "owner": "all", "bogus": "x", "search": "  ac  "}
        assert [f.param() for f in THINGS.query_filters(params)] == [
            ("status", "eq.open"),
            ("name", "ilike.%ac%"),
        ]

    def test_build_payload_defaults_and_fixed(self):
        payload = THINGS.build_payload({"name": "n", "status": None, "source": "spoofed", "extra": 1})
        assert payload == {"name": "n", "status": "new", "tags": [], "owner_name": None, "source": "api"}

    def test_build_payload_defaults_are_not_shared(self):
        first = THINGS.build_payload({"name": "a"})
        first["tags"].append("x")
        assert THINGS.build_payload({"name": "b"})["tags"] == []

    def test_build_payload_requires_fields(self):
        with pytest.raises(BadRequest, match="name required"):
            THINGS.build_payload({"name": ""})

    def test_build_patch_only_updatable(self):
        patch = THINGS.build_patch({"name": "x", "source": "nope"})
        assert patch["name"] == "x"
        assert "source" not in patch
        assert "updated_at" in patch

    @pytest.mark.asyncio
    async def test_crud_round(self):
        fake = FakeStore()
        async with fake.open() as store:
            created = await THINGS.create(store, {"name": "widget"})
            assert created["status"] == "new"
            assert created["id"]

            listed = await THINGS.list_rows(store, {"status": "new"})
            assert [r["name"] for r in listed] == ["widget"]

            updated = await THINGS.update(store, created["id"], {"status": "done"})
            assert updated["status"] == "done"

            assert await THINGS.delete(store, created["id"]) == {"success": True}
            with pytest.raises(NotFound, match="Thing not found"):
                await THINGS.get(store, created["id"])

    @pytest.mark.asyncio
    async def test_update_missing_row_is_not_found(self):
        fake = FakeStore()
        async with fake.open() as store:
            with pytest.raises(NotFound):
                await THINGS.update(store, "missing", {"name": "x"})

    @pytest.mark.asyncio
    async def test_child_scoped_to_parent(self):
        fake = FakeStore()
        fake.seed("children", {"id": "c1", "thing_id": "t1", "name": "mine"}, {"id": "c2", "thing_id": "t2", "name": "other"})
        async with fake.open() as store:
            rows = await CHILDREN.list_rows(store, parent_id="t1")
            assert [r["id"] for r in rows] == ["c1"]
            # a child of another parent cannot be patched through this one
            with pytest.raises(NotFound):
                await CHILDREN.update(store, "c2", {"name": "x"}, parent_id="t1")
            created = await CHILDREN.create(store, {"name": "new"}, parent_id="t1")
        assert created["thing_id"] == "t1"
