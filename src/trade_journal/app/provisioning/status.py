"""Normalization of remote provisioning results to local account status.

The mapping is total: any outcome or raw state not positively recognized
as deployed or in progress maps to ``ERROR``.
"""

from __future__ import annotations

from enum import Enum

from ..providers.metaapi_client import (
    DEPLOYED_STATES,
    IN_PROGRESS_STATES,
    UNDEPLOYED_STATES,
)
from .controller import ProvisioningOutcome, ProvisioningSucceeded


class BrokerAccountStatus(str, Enum):
    """Lifecycle status of a local broker account record."""

    INITIALIZING = 'INITIALIZING'
    ACTIVE = 'ACTIVE'
    DISCONNECTED = 'DISCONNECTED'
    ERROR = 'ERROR'


def status_for_outcome(outcome: ProvisioningOutcome | None) -> BrokerAccountStatus:
    """Local status for a polling outcome (``None`` while still polling)."""
    if outcome is None:
        return BrokerAccountStatus.INITIALIZING
    if isinstance(outcome, ProvisioningSucceeded):
        return BrokerAccountStatus.ACTIVE
    return BrokerAccountStatus.ERROR


def status_for_remote_state(raw_state: str | None) -> BrokerAccountStatus:
    """Local status for a raw provider account state."""
    state = (raw_state or '').strip().upper()
    if state in DEPLOYED_STATES:
        return BrokerAccountStatus.ACTIVE
    if state in IN_PROGRESS_STATES:
        return BrokerAccountStatus.INITIALIZING
    if state in UNDEPLOYED_STATES:
        return BrokerAccountStatus.DISCONNECTED
    return BrokerAccountStatus.ERROR
