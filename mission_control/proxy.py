"""Generic record proxy between the HTTP surface and the external store.

Every entity the dashboard exposes (partners, contacts, planning goals, ...)
is described by one :class:`Collection`. The collection knows its table, how
it is projected and ordered, which query parameters may filter it, what a new
row defaults to and which fields a patch may touch. The operations below are
the same for every entity.
"""
from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mission_control.store import Filter, StoreClient, eq, ilike

Record = dict[str, Any]


class ProxyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(ProxyError):
    status_code = 400


class NotFound(ProxyError):
    status_code = 404


def utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Collection:
    table: str
    plural: str
    singular: str
    label: str = "Record"
    columns: str = "*"
    order: tuple[str, ...] = ()
    limit: int | None = 500
    # query parameter name -> column, matched with eq
    filters: Mapping[str, str] = field(default_factory=dict)
    search_field: str | None = None
    required: tuple[str, ...] = ()
    # every field a new row carries, with its value when the body omits it
    defaults: Mapping[str, Any] = field(default_factory=dict)
    # values forced on create regardless of the body
    fixed: Mapping[str, Any] = field(default_factory=dict)
    updatable: tuple[str, ...] = ()
    parent_key: str | None = None
    stamp_updated_at: bool = False
    on_read: Callable[[Record], Record] | None = None
    # applied to both create payloads and patches
    on_write: Callable[[Record], Record] | None = None

    # -- helpers ------------------------------------------------------------

    def _read(self, row: Record) -> Record:
        return self.on_read(row) if self.on_read else row

    def _scope(self, record_id: Any = None, parent_id: Any = None) -> list[Filter]:
        scope: list[Filter] = []
        if record_id is not None:
            scope.append(eq("id", record_id))
        if parent_id is not None and self.parent_key:
            scope.append(eq(self.parent_key, parent_id))
        return scope

    def query_filters(self, params: Mapping[str, Any]) -> list[Filter]:
        """Translate allowlisted query parameters into store filters.

        Names outside the allowlist are ignored; empty values and ``"all"``
        mean "no filter".
        """
        out: list[Filter] = []
        for name, column in self.filters.items():
            value = params.get(name)
            if value is None or value == "" or value == "all":
                continue
            out.append(eq(column, value))
        search = (params.get("search") or "").strip() if self.search_field else ""
        if search:
            out.append(ilike(self.search_field, search))
        return out

    def build_payload(self, body: Mapping[str, Any], parent_id: Any = None) -> Record:
        missing = [f for f in self.required if body.get(f) in (None, "")]
        if missing:
            raise BadRequest(f"{', '.join(missing)} required")
        payload: Record = {}
        for name in self.required:
            payload[name] = body[name]
        for name, default in self.defaults.items():
            value = body.get(name)
            payload[name] = copy.deepcopy(default) if value is None else value
        payload.update(self.fixed)
        if parent_id is not None and self.parent_key:
            payload[self.parent_key] = parent_id
        return self.on_write(payload) if self.on_write else payload

    def build_patch(self, body: Mapping[str, Any]) -> Record:
        patch = {k: body[k] for k in self.updatable if k in body}
        if self.on_write:
            patch = self.on_write(patch)
        if self.stamp_updated_at:
            patch["updated_at"] = utcnow_iso()
        return patch

    # -- operations ---------------------------------------------------------

    async def list_rows(
        self,
        store: StoreClient,
        params: Mapping[str, Any] | None = None,
        parent_id: Any = None,
        extra: tuple[Filter, ...] = (),
    ) -> list[Record]:
        filters = [*self._scope(parent_id=parent_id), *self.query_filters(params or {}), *extra]
        rows = await store.select(self.table, self.columns, filters, self.order, self.limit)
        return [self._read(r) for r in rows]

    async def get(self, store: StoreClient, record_id: Any) -> Record:
        rows = await store.select(self.table, "*", self._scope(record_id), limit=1)
        if not rows:
            raise NotFound(f"{self.label} not found")
        return self._read(rows[0])

    async def create(self, store: StoreClient, body: Mapping[str, Any], parent_id: Any = None) -> Record:
        payload = self.build_payload(body, parent_id)
        row = await store.insert(self.table, payload)
        return self._read(row or payload)

    async def update(
        self, store: StoreClient, record_id: Any, body: Mapping[str, Any], parent_id: Any = None,
    ) -> Record:
        patch = self.build_patch(body)
        row = await store.update(self.table, patch, self._scope(record_id, parent_id))
        if row is None:
            raise NotFound(f"{self.label} not found")
        return self._read(row)

    async def delete(self, store: StoreClient, record_id: Any, parent_id: Any = None) -> dict[str, bool]:
        await store.delete(self.table, self._scope(record_id, parent_id))
        return {"success": True}
