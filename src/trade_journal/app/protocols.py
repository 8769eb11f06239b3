"""Repository and provider protocol interfaces for dependency injection.

Concrete implementations (InMemory for local dev, Supabase for non-local)
must satisfy these; the app factory accepts any matching implementation.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .provisioning.controller import ProvisioningClient

__all__ = [
    'BrokerAccountStore',
    'ProvisioningClient',
    'RemoteAccountReader',
]


@runtime_checkable
class BrokerAccountStore(Protocol):
    """Broker account records keyed by the provider's account id.

    ``upsert_by_remote_id`` creates the record if absent, otherwise updates
    its mutable fields and leaves ``created_at`` untouched. Repeating the
    same call is a no-op.
    """

    async def upsert_by_remote_id(self, remote_id: str, data: dict[str, Any]) -> dict[str, Any]: ...
    async def get_by_remote_id(self, remote_id: str) -> dict[str, Any] | None: ...
    async def list_for_user(self, user_id: str, *, status: str | None = None) -> list[dict[str, Any]]: ...
    async def update_by_remote_id(self, remote_id: str, data: dict[str, Any]) -> dict[str, Any] | None: ...


@runtime_checkable
class RemoteAccountReader(Protocol):
    """Live account metadata lookups against the provider."""

    async def get_account(self, account_id: str) -> dict[str, Any]: ...
