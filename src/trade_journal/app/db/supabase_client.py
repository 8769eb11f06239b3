"""Async PostgREST client for the broker account tables.

Talks to Supabase with the service-role key. Only the three verbs the
repositories need are exposed: filtered select, upsert on a unique column,
and filtered update. Every call returns the affected rows
(``Prefer: return=representation``).

Tables outside ``public`` are addressed as ``schema.table`` and routed with
Accept-Profile/Content-Profile headers.
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from .errors import SupabaseError, error_class_for_status

Row = dict[str, Any]


def eq_filters(eq: Mapping[str, Any] | None) -> dict[str, str]:
    """Encode column equality filters as PostgREST query params.

    ``None`` becomes ``is.null`` and booleans use ``is.true``/``is.false``.
    """
    params: dict[str, str] = {}
    for column, value in (eq or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"is.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


def _error_from_response(resp: httpx.Response) -> SupabaseError:
    fields: dict[str, Any] = {"message": resp.text or f"HTTP {resp.status_code}"}
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        fields["message"] = payload.get("message") or fields["message"]
        for key in ("code", "details", "hint"):
            if payload.get(key) is not None:
                fields[key] = str(payload[key])
    # The response is dropped here; its request carries the service key.
    return error_class_for_status(resp.status_code)(resp.status_code, **fields)


class SupabaseClient:
    """PostgREST access with the service-role key."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        default_schema: str = "public",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._rest_url = supabase_url.rstrip("/") + "/rest/v1"
        self._key = service_role_key
        self._default_schema = default_schema or "public"
        self._timeout = float(timeout_seconds)
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.AsyncClient()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _route(self, table: str) -> tuple[str, str]:
        schema, _, name = table.rpartition(".")
        return f"{self._rest_url}/{name}", schema or self._default_schema

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str],
        body: Any = None,
        prefer: str = "return=representation",
    ) -> list[Row]:
        url, schema = self._route(table)
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Accept-Profile": schema,
        }
        if method != "GET":
            headers["Content-Profile"] = schema
            headers["Prefer"] = prefer

        resp = await self._http.request(
            method,
            url,
            params=params,
            json=body,
            headers=headers,
            timeout=self._timeout,
        )
        if resp.status_code >= 400:
            raise _error_from_response(resp)

        rows = resp.json()
        if not isinstance(rows, list):
            raise SupabaseError(500, f"{method} {table} did not return a row list")
        return rows

    async def select(
        self,
        table: str,
        *,
        eq: Mapping[str, Any] | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        params = eq_filters(eq)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(int(limit))
        return await self._send("GET", table, params=params)

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        on_conflict: str,
    ) -> list[Row]:
        """Insert ``row`` or merge it into the row sharing ``on_conflict``.

        Columns absent from ``row`` keep their stored values.
        """
        return await self._send(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            body=dict(row),
            prefer="return=representation,resolution=merge-duplicates",
        )

    async def update(
        self,
        table: str,
        changes: Mapping[str, Any],
        *,
        eq: Mapping[str, Any],
    ) -> list[Row]:
        if not eq:
            raise ValueError("update requires at least one filter")
        return await self._send("PATCH", table, params=eq_filters(eq), body=dict(changes))
