"""Provisioning polling state machine.

States of one provisioning sequence:

  submitting -> waiting_retry -> submitting -> ...
  submitting -> succeeded | failed | errored
  waiting_retry -> submitting | timed_out

``ProvisioningAttempt`` is the per-sequence snapshot; every transition
returns a new snapshot. Nothing here is shared between sequences.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from types import MappingProxyType

SUBMITTING = 'submitting'
WAITING_RETRY = 'waiting_retry'
SUCCEEDED = 'succeeded'
FAILED = 'failed'
TIMED_OUT = 'timed_out'
ERRORED = 'errored'

TERMINAL_STATES = frozenset({SUCCEEDED, FAILED, TIMED_OUT, ERRORED})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        SUBMITTING: frozenset({WAITING_RETRY, SUCCEEDED, FAILED, ERRORED}),
        WAITING_RETRY: frozenset({SUBMITTING, TIMED_OUT}),
        SUCCEEDED: frozenset(),
        FAILED: frozenset(),
        TIMED_OUT: frozenset(),
        ERRORED: frozenset(),
    }
)


@dataclass(frozen=True, slots=True)
class ProvisioningAttempt:
    """Snapshot of one provisioning sequence."""

    transaction_id: str
    state: str = SUBMITTING
    attempts: int = 0
    elapsed_wait_seconds: float = 0.0
    last_remote_state: str | None = None
    last_result_kind: str | None = None
    remote_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class InvalidStateTransition(ValueError):
    """Raised for invalid provisioning state transitions."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f'invalid state transition: {from_state!r} -> {to_state!r}'
        )


def start_attempt(transaction_id: str) -> ProvisioningAttempt:
    if not transaction_id:
        raise ValueError('transaction_id is required')
    return ProvisioningAttempt(transaction_id=transaction_id)


def record_response(
    attempt: ProvisioningAttempt,
    *,
    to_state: str,
    result_kind: str,
    remote_state: str | None = None,
    remote_id: str | None = None,
) -> ProvisioningAttempt:
    """Apply one classified response; a pending response bumps ``attempts``.

    The first remote id seen is kept for the rest of the sequence.
    """
    attempt = transition(attempt, to_state)
    return replace(
        attempt,
        attempts=attempt.attempts + (1 if to_state == WAITING_RETRY else 0),
        last_result_kind=result_kind,
        last_remote_state=remote_state if remote_state is not None else attempt.last_remote_state,
        remote_id=attempt.remote_id or remote_id,
    )


def record_wait(attempt: ProvisioningAttempt, seconds: float) -> ProvisioningAttempt:
    """Account for a completed backoff sleep and go back to submitting."""
    attempt = transition(attempt, SUBMITTING)
    return replace(
        attempt,
        elapsed_wait_seconds=attempt.elapsed_wait_seconds + seconds,
    )


def transition(attempt: ProvisioningAttempt, to_state: str) -> ProvisioningAttempt:
    allowed = ALLOWED_TRANSITIONS.get(attempt.state, frozenset())
    if to_state not in allowed:
        raise InvalidStateTransition(attempt.state, to_state)
    return replace(attempt, state=to_state)
