"""Async client for the hosted relational store's PostgREST interface.

Tables are addressed by name under ``/rest/v1/<table>``; filters, ordering and
projection travel as query parameters (``pipeline_status=eq.active``,
``name=ilike.%acme%``, ``order=created_at.desc``, ``select=id,name``).
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx

from mission_control.config import Settings, get_settings

log = logging.getLogger(__name__)


class StoreError(Exception):
    """The external store answered with a non-success status or was unreachable."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def _quote(value: Any) -> str:
    """Quote a value for use inside an ``or=(...)`` group."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


@dataclass(frozen=True)
class Filter:
    """One PostgREST query-string filter, rendered as ``(key, value)``."""

    key: str
    expr: str

    def param(self) -> tuple[str, str]:
        return self.key, self.expr


def eq(field: str, value: Any) -> Filter:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return Filter(field, f"eq.{value}")


def ilike(field: str, value: str) -> Filter:
    return Filter(field, f"ilike.%{value}%")


def gte(field: str, value: Any) -> Filter:
    return Filter(field, f"gte.{value}")


def not_null(field: str) -> Filter:
    return Filter(field, "not.is.null")


def in_(field: str, values: Iterable[Any]) -> Filter:
    return Filter(field, f"in.({','.join(_quote(v) for v in values)})")


def any_ilike(fields: Sequence[str], value: str) -> Filter:
    """Case-insensitive substring match on any of ``fields``."""
    pattern = _quote(f"%{value}%")
    return Filter("or", "(" + ",".join(f"{f}.ilike.{pattern}" for f in fields) + ")")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class StoreClient:
    """Thin async wrapper over the store's REST endpoints.

    Every call either returns decoded JSON or raises :class:`StoreError`.
    Nothing is retried; timeouts are httpx defaults.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http = httpx.AsyncClient(base_url=self.base_url, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> StoreClient:
        settings = settings or get_settings()
        return cls(settings.rest_url, settings.supabase_key, **kwargs)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> StoreClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _headers(self, prefer: str | None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        try:
            response = await self._http.request(
                method, path, params=params, json=json, headers=self._headers(prefer),
            )
        except httpx.HTTPError as exc:
            log.warning("Store %s %s failed: %s", method, path, exc)
            raise StoreError(f"Store request failed: {exc}", status_code=502) from exc
        if response.is_error:
            raise StoreError(response.text or response.reason_phrase, status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            log.warning("Store %s %s returned a non-JSON body", method, path)
            raise StoreError(f"Store returned an unreadable response: {exc}", status_code=502) from exc

    @staticmethod
    def _params(
        columns: str | None = None,
        filters: Iterable[Filter] = (),
        order: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        if columns:
            params.append(("select", columns))
        params.extend(f.param() for f in filters)
        if order:
            params.append(("order", ",".join(order)))
        if limit is not None:
            params.append(("limit", str(limit)))
        return params

    @staticmethod
    def _first(data: Any) -> dict[str, Any] | None:
        if isinstance(data, list):
            return data[0] if data else None
        return data

    # -- reads --------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Iterable[Filter] = (),
        order: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/{table}", params=self._params(columns, filters, order, limit))
        return data if isinstance(data, list) else []

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        return await self._request("POST", f"/rpc/{function}", json=params)

    # -- writes -------------------------------------------------------------

    async def insert(self, table: str, payload: dict[str, Any]) -> dict[str, Any] | None:
        data = await self._request("POST", f"/{table}", json=payload, prefer="return=representation")
        return self._first(data)

    async def update(
        self, table: str, patch: dict[str, Any], filters: Iterable[Filter],
    ) -> dict[str, Any] | None:
        data = await self._request(
            "PATCH", f"/{table}", params=self._params(filters=filters),
            json=patch, prefer="return=representation",
        )
        return self._first(data)

    async def delete(self, table: str, filters: Iterable[Filter]) -> None:
        await self._request("DELETE", f"/{table}", params=self._params(filters=filters), prefer="return=minimal")

    async def upsert(
        self, table: str, rows: list[dict[str, Any]], on_conflict: str | None = None,
    ) -> list[dict[str, Any]]:
        """Insert rows, merging into existing ones that collide on ``on_conflict``."""
        params = [("on_conflict", on_conflict)] if on_conflict else None
        data = await self._request(
            "POST", f"/{table}", params=params, json=rows,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return data if isinstance(data, list) else []


@asynccontextmanager
async def open_store(settings: Settings | None = None) -> AsyncIterator[StoreClient]:
    client = StoreClient.from_settings(settings)
    try:
        yield client
    finally:
        await client.aclose()
