"""Remote broker-integration providers."""

from .metaapi_client import (
    Deployed,
    Failed,
    MetaApiError,
    MetaApiNotFoundError,
    MetaApiProvisioningClient,
    Pending,
    ProtocolError,
    RemoteError,
    SubmitResult,
)

__all__ = [
    "Deployed",
    "Failed",
    "MetaApiError",
    "MetaApiNotFoundError",
    "MetaApiProvisioningClient",
    "Pending",
    "ProtocolError",
    "RemoteError",
    "SubmitResult",
]
