"""Broker connection service.

``submit_broker_connection`` is the one operation callers use to connect a
MetaTrader account: it mints a transaction id, drives the polling
controller, and reconciles the outcome into the broker account store.

Reconciliation rules:
  - the first remote id seen while pending creates an INITIALIZING record
  - a terminal outcome with a known remote id upserts the normalized status
    (ACTIVE on success, ERROR otherwise), so no record stays INITIALIZING
  - no remote id, no record

Store failures are reported as ``store_error``. The remote account may
already exist at that point; that divergence is left to account sync.

The remaining operations (status lookup, list, disconnect, sync) are the
account-management counterparts used by the broker routes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from ..protocols import BrokerAccountStore, RemoteAccountReader
from .controller import (
    PollingController,
    ProvisioningErrored,
    ProvisioningFailed,
    ProvisioningOutcome,
    ProvisioningSucceeded,
    ProvisioningTimedOut,
)
from .request import BrokerCredentials, build_provisioning_request
from .status import BrokerAccountStatus, status_for_outcome, status_for_remote_state
from .transaction_id import generate_transaction_id

logger = logging.getLogger(__name__)

# Result codes.
CONNECTED = "connected"
DEPLOY_FAILED = "deploy_failed"
TIMEOUT = "timeout"
REMOTE_ERROR = "remote_error"
PROVIDER_UNAVAILABLE = "provider_unavailable"
PROTOCOL_ERROR = "protocol_error"
STORE_ERROR = "store_error"
INVALID_REQUEST = "invalid_request"
UNAUTHENTICATED = "unauthenticated"
NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class BrokerConnectionResult:
    """Outcome of a broker operation as reported to the caller."""

    success: bool
    code: str
    message: str
    broker_account: dict[str, Any] | None = None
    transaction_id: str | None = None
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "code": self.code,
            "message": self.message,
            "broker_account": self.broker_account,
        }


@dataclass(frozen=True, slots=True)
class SyncSummary:
    synced_count: int
    failed_count: int
    total_count: int
    failed_accounts: tuple[str, ...] = field(default_factory=tuple)


class _InitializingWriteFailed(Exception):
    """The store rejected the INITIALIZING record; aborts the sequence."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause))
        self.cause = cause


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_code(http_status: int | None) -> str:
    """Provider 4xx rejected the request; 5xx and transport failures (0) did not."""
    if http_status is None:
        return PROTOCOL_ERROR
    if http_status == 0 or http_status >= 500:
        return PROVIDER_UNAVAILABLE
    return REMOTE_ERROR


class BrokerConnectionService:
    """Connects broker accounts and manages their local records.

    Args:
        controller: Polling controller bound to a provisioning client.
        store: Broker account store (upsert keyed by remote id).
        region: Provider region for new accounts.
        magic: Magic number tag for new accounts.
        account_reader: Optional live lookup client for ``get_remote_status``.
        transaction_id_factory: Mints one correlation token per attempt.
    """

    def __init__(
        self,
        *,
        controller: PollingController,
        store: BrokerAccountStore,
        region: str,
        magic: int,
        account_reader: RemoteAccountReader | None = None,
        transaction_id_factory: Callable[[], str] = generate_transaction_id,
    ) -> None:
        self._controller = controller
        self._store = store
        self._region = region
        self._magic = magic
        self._reader = account_reader
        self._new_transaction_id = transaction_id_factory

    # ── Submit ────────────────────────────────────────────────────────

    async def submit_broker_connection(
        self,
        user_id: str | None,
        credentials: BrokerCredentials,
    ) -> BrokerConnectionResult:
        """Provision a broker account and reconcile the local record."""
        if not user_id:
            return BrokerConnectionResult(
                success=False,
                code=UNAUTHENTICATED,
                message="User not authenticated",
            )

        missing = credentials.missing_fields()
        if missing:
            return BrokerConnectionResult(
                success=False,
                code=INVALID_REQUEST,
                message=f"Missing required fields: {', '.join(missing)}",
            )

        transaction_id = self._new_transaction_id()
        request = build_provisioning_request(
            credentials,
            transaction_id=transaction_id,
            region=self._region,
            magic=self._magic,
        )
        fields = {
            "user_id": user_id,
            "broker_name": request.broker_name,
            "platform": request.platform,
            "server": request.server,
            "account_number": request.login,
        }

        async def mark_initializing(remote_id: str) -> None:
            try:
                await self._store.upsert_by_remote_id(
                    remote_id,
                    {**fields, "status": BrokerAccountStatus.INITIALIZING.value},
                )
            except Exception as exc:
                raise _InitializingWriteFailed(exc) from exc

        try:
            outcome = await self._controller.run(
                request, on_remote_id=mark_initializing,
            )
        except _InitializingWriteFailed as failure:
            logger.error(
                "Broker account store write failed: transaction=%s",
                transaction_id,
                exc_info=failure.cause,
            )
            return BrokerConnectionResult(
                success=False,
                code=STORE_ERROR,
                message=f"Failed to save broker account: {failure.cause}",
                transaction_id=transaction_id,
            )

        record: dict[str, Any] | None = None
        remote_id = getattr(outcome, "remote_id", None)
        if remote_id:
            status = status_for_outcome(outcome)
            update = {**fields, "status": status.value}
            if status is BrokerAccountStatus.ACTIVE:
                update["last_synced_at"] = _utcnow_iso()
            try:
                record = await self._store.upsert_by_remote_id(remote_id, update)
            except Exception as exc:
                logger.exception(
                    "Broker account reconciliation failed: transaction=%s remote_id=%s",
                    transaction_id,
                    remote_id,
                )
                return BrokerConnectionResult(
                    success=False,
                    code=STORE_ERROR,
                    message=f"Failed to save broker account: {exc}",
                    transaction_id=transaction_id,
                )

        return self._result_for(outcome, record)

    def _result_for(
        self,
        outcome: ProvisioningOutcome,
        record: dict[str, Any] | None,
    ) -> BrokerConnectionResult:
        tid = outcome.transaction_id
        if isinstance(outcome, ProvisioningSucceeded):
            return BrokerConnectionResult(
                success=True,
                code=CONNECTED,
                message="Broker account connected successfully",
                broker_account=record,
                transaction_id=tid,
            )
        if isinstance(outcome, ProvisioningFailed):
            return BrokerConnectionResult(
                success=False,
                code=DEPLOY_FAILED,
                message=outcome.message,
                broker_account=record,
                transaction_id=tid,
            )
        if isinstance(outcome, ProvisioningTimedOut):
            return BrokerConnectionResult(
                success=False,
                code=TIMEOUT,
                message=outcome.message,
                broker_account=record,
                transaction_id=tid,
            )
        # ProvisioningErrored
        return BrokerConnectionResult(
            success=False,
            code=_error_code(outcome.http_status),
            message=outcome.message,
            broker_account=record,
            transaction_id=tid,
            details=outcome.details,
        )

    # ── Account management ───────────────────────────────────────────

    async def _owned_account(self, user_id: str, remote_id: str) -> dict[str, Any] | None:
        record = await self._store.get_by_remote_id(remote_id)
        if record is None or record.get("user_id") != user_id:
            return None
        return record

    async def get_remote_status(self, user_id: str, remote_id: str) -> dict[str, Any] | None:
        """Live provider state for one of the user's accounts.

        Returns None when the account is unknown or owned by someone else.
        Raises ``MetaApiError`` when the provider lookup fails.
        """
        record = await self._owned_account(user_id, remote_id)
        if record is None:
            return None
        if self._reader is None:
            raise RuntimeError("remote account lookups are not configured")

        data = await self._reader.get_account(remote_id)
        raw_state = str(data.get("state") or "")
        return {
            "account_id": remote_id,
            "status": status_for_remote_state(raw_state).value,
            "raw_state": raw_state,
            "connection_status": data.get("connectionStatus"),
            "local_status": record.get("status"),
        }

    async def list_accounts(
        self,
        user_id: str,
        *,
        status: BrokerAccountStatus | None = None,
    ) -> list[dict[str, Any]]:
        return await self._store.list_for_user(
            user_id, status=status.value if status else None,
        )

    async def disconnect_account(self, user_id: str, remote_id: str) -> BrokerConnectionResult:
        """Mark one of the user's accounts DISCONNECTED."""
        if await self._owned_account(user_id, remote_id) is None:
            return BrokerConnectionResult(
                success=False, code=NOT_FOUND, message="Account not found",
            )
        record = await self._store.update_by_remote_id(
            remote_id,
            {
                "status": BrokerAccountStatus.DISCONNECTED.value,
                "last_synced_at": _utcnow_iso(),
            },
        )
        logger.info("Broker account disconnected: remote_id=%s", remote_id)
        return BrokerConnectionResult(
            success=True,
            code="disconnected",
            message="Account disconnected successfully",
            broker_account=record,
        )

    async def sync_accounts(self, user_id: str) -> SyncSummary:
        """Stamp ``last_synced_at`` on every ACTIVE account of the user."""
        accounts = await self._store.list_for_user(
            user_id, status=BrokerAccountStatus.ACTIVE.value,
        )
        failed: list[str] = []
        for account in accounts:
            remote_id = account["meta_api_account_id"]
            try:
                await self._store.update_by_remote_id(
                    remote_id, {"last_synced_at": _utcnow_iso()},
                )
            except Exception:
                logger.exception("Account sync failed: remote_id=%s", remote_id)
                failed.append(remote_id)
        return SyncSummary(
            synced_count=len(accounts) - len(failed),
            failed_count=len(failed),
            total_count=len(accounts),
            failed_accounts=tuple(failed),
        )
