"""In-memory broker account store and provisioning client.

Used when ENVIRONMENT=local and in tests. They satisfy ``BrokerAccountStore``
and ``ProvisioningClient`` but keep everything in dicts (no persistence
across restarts, no network).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from .providers.metaapi_client import (
    Deployed,
    MetaApiNotFoundError,
    SubmitResult,
)
from .provisioning.request import ProvisioningRequest

# Fields an upsert may change on an existing record.
MUTABLE_FIELDS = frozenset({
    "status",
    "broker_name",
    "platform",
    "server",
    "account_number",
    "last_synced_at",
})


class InMemoryBrokerAccountStore:
    def __init__(self) -> None:
        self._accounts: dict[str, dict[str, Any]] = {}
        self.upsert_calls: list[tuple[str, dict[str, Any]]] = []

    def __len__(self) -> int:
        return len(self._accounts)

    async def upsert_by_remote_id(self, remote_id: str, data: dict[str, Any]) -> dict[str, Any]:
        if not remote_id:
            raise ValueError("remote_id is required")
        self.upsert_calls.append((remote_id, dict(data)))

        existing = self._accounts.get(remote_id)
        if existing is None:
            now = datetime.now(timezone.utc).isoformat()
            record = {
                "id": f"ba_{uuid.uuid4().hex[:12]}",
                "last_synced_at": None,
                **data,
                "meta_api_account_id": remote_id,
                "created_at": now,
                "updated_at": now,
            }
            self._accounts[remote_id] = record
            return dict(record)

        changes = {
            k: v for k, v in data.items()
            if k in MUTABLE_FIELDS and existing.get(k) != v
        }
        if changes:
            existing.update(changes)
            existing["updated_at"] = datetime.now(timezone.utc).isoformat()
        return dict(existing)

    async def get_by_remote_id(self, remote_id: str) -> dict[str, Any] | None:
        record = self._accounts.get(remote_id)
        return dict(record) if record is not None else None

    async def list_for_user(self, user_id: str, *, status: str | None = None) -> list[dict[str, Any]]:
        rows = [
            dict(r) for r in self._accounts.values()
            if r.get("user_id") == user_id
            and (status is None or r.get("status") == status)
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows

    async def update_by_remote_id(self, remote_id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        record = self._accounts.get(remote_id)
        if record is None:
            return None
        record.update({k: v for k, v in data.items() if k in MUTABLE_FIELDS})
        record["updated_at"] = datetime.now(timezone.utc).isoformat()
        return dict(record)


class InMemoryProvisioningClient:
    """Provider stand-in that deploys every account on the first round.

    ``script`` queues results to return before falling back to an
    immediate ``Deployed``. Each transaction id maps to one remote id, so
    resubmitting the same request never creates a second account.
    """

    def __init__(self, script: Iterable[SubmitResult] = ()) -> None:
        self._script = list(script)
        self._ids_by_transaction: dict[str, str] = {}
        self._accounts: dict[str, dict[str, Any]] = {}
        self.requests: list[ProvisioningRequest] = []

    async def submit_account(self, request: ProvisioningRequest) -> SubmitResult:
        self.requests.append(request)
        if self._script:
            return self._script.pop(0)

        remote_id = self._ids_by_transaction.setdefault(
            request.transaction_id, f"acc_{uuid.uuid4().hex[:12]}",
        )
        self._accounts[remote_id] = {
            "_id": remote_id,
            "login": request.login,
            "server": request.server,
            "state": "DEPLOYED",
            "connectionStatus": "CONNECTED",
        }
        return Deployed(remote_id=remote_id, raw_state="DEPLOYED")

    async def get_account(self, account_id: str) -> dict[str, Any]:
        account = self._accounts.get(account_id)
        if account is None:
            raise MetaApiNotFoundError()
        return dict(account)

    async def aclose(self) -> None:
        return None
