"""Supabase-backed broker account store.

Implements ``BrokerAccountStore`` against ``public.broker_accounts``, which
has a unique index on ``meta_api_account_id``. A new remote id is inserted
with a PostgREST upsert merging on that column, so a concurrent insert of
the same id cannot duplicate it. A known remote id is PATCHed with the
changed columns only: ``user_id`` and ``created_at`` keep their
insert-time values.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .supabase_client import SupabaseClient

TABLE = "public.broker_accounts"
CONFLICT_COLUMN = "meta_api_account_id"

# Columns callers may write; ``user_id`` only on insert.
WRITABLE_COLUMNS = frozenset({
    "user_id",
    "status",
    "broker_name",
    "platform",
    "server",
    "account_number",
    "last_synced_at",
})


def _pick(data: dict[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k in allowed}


class SupabaseBrokerAccountStore:
    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def upsert_by_remote_id(self, remote_id: str, data: dict[str, Any]) -> dict[str, Any]:
        if not remote_id:
            raise ValueError("remote_id is required")

        existing = await self.get_by_remote_id(remote_id)
        if existing is None:
            return await self._insert(remote_id, data)

        changes = _pick(data, WRITABLE_COLUMNS - {"user_id"})
        if all(existing.get(k) == v for k, v in changes.items()):
            return existing
        changes["updated_at"] = datetime.now(timezone.utc).isoformat()
        rows = await self._client.update(TABLE, changes, eq={CONFLICT_COLUMN: remote_id})
        if rows:
            return rows[0]
        # Deleted between the read and the write; recreate it for the same owner.
        return await self._insert(remote_id, {**data, "user_id": existing.get("user_id")})

    async def _insert(self, remote_id: str, data: dict[str, Any]) -> dict[str, Any]:
        row = _pick(data, WRITABLE_COLUMNS)
        row[CONFLICT_COLUMN] = remote_id
        rows = await self._client.upsert(TABLE, row, on_conflict=CONFLICT_COLUMN)
        return rows[0]

    async def get_by_remote_id(self, remote_id: str) -> dict[str, Any] | None:
        rows = await self._client.select(TABLE, eq={CONFLICT_COLUMN: remote_id}, limit=1)
        return rows[0] if rows else None

    async def list_for_user(self, user_id: str, *, status: str | None = None) -> list[dict[str, Any]]:
        eq: dict[str, Any] = {"user_id": user_id}
        if status is not None:
            eq["status"] = status
        return await self._client.select(TABLE, eq=eq, order="created_at.desc")

    async def update_by_remote_id(self, remote_id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        changes = _pick(data, WRITABLE_COLUMNS - {"user_id"})
        changes["updated_at"] = datetime.now(timezone.utc).isoformat()
        rows = await self._client.update(TABLE, changes, eq={CONFLICT_COLUMN: remote_id})
        return rows[0] if rows else None
