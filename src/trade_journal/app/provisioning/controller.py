"""Polling controller for broker account provisioning.

Drives one provisioning sequence: the same ``ProvisioningRequest`` (same
payload bytes, same transaction id) is submitted until the provider reports
a terminal state, an error, or the retry budget runs out.

Per round:
  Deployed                  -> succeeded, stop
  Failed                    -> failed, stop
  RemoteError/ProtocolError -> errored, stop (not retried)
  Pending                   -> attempts += 1; time out when the budget is
                               spent, otherwise sleep and resubmit

The controller keeps all state in a local ``ProvisioningAttempt``; any
number of sequences may run concurrently on the same controller.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Union

from ..providers.metaapi_client import (
    Deployed,
    Failed,
    Pending,
    ProtocolError,
    RemoteError,
    SubmitResult,
)
from .request import ProvisioningRequest
from .state_machine import (
    ERRORED,
    FAILED,
    SUCCEEDED,
    TIMED_OUT,
    WAITING_RETRY,
    ProvisioningAttempt,
    record_response,
    record_wait,
    start_attempt,
    transition,
)

logger = logging.getLogger(__name__)

RemoteIdCallback = Callable[[str], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[Any]]


class ProvisioningClient(Protocol):
    """One provisioning round against the remote provider."""

    async def submit_account(self, request: ProvisioningRequest) -> SubmitResult: ...


# ── Outcomes ─────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ProvisioningSucceeded:
    transaction_id: str
    attempts: int
    remote_id: str
    raw_state: str


@dataclass(frozen=True, slots=True)
class ProvisioningFailed:
    transaction_id: str
    attempts: int
    remote_id: str | None
    raw_state: str
    message: str


@dataclass(frozen=True, slots=True)
class ProvisioningTimedOut:
    transaction_id: str
    attempts: int
    remote_id: str | None
    elapsed_wait_seconds: float

    @property
    def message(self) -> str:
        return (
            f'Broker account provisioning timed out after {self.attempts} '
            f'attempts. Please try again later'
        )


@dataclass(frozen=True, slots=True)
class ProvisioningErrored:
    transaction_id: str
    attempts: int
    message: str
    details: Any = None
    http_status: int | None = None
    remote_id: str | None = None


ProvisioningOutcome = Union[
    ProvisioningSucceeded,
    ProvisioningFailed,
    ProvisioningTimedOut,
    ProvisioningErrored,
]


# ── Policy ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class PollingPolicy:
    """Retry budget for one provisioning sequence."""

    max_attempts: int = 30
    default_delay_seconds: float = 10.0
    max_delay_seconds: float = 60.0
    max_total_wait_seconds: float = 900.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError('max_attempts must be >= 1')
        if self.default_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError('delays must be >= 0')

    def delay_for(self, retry_after_seconds: float | None) -> float:
        """Backoff before the next round; server hints win, capped.

        Non-finite hints fall back to the default delay.
        """
        if retry_after_seconds is None or not math.isfinite(retry_after_seconds):
            delay = self.default_delay_seconds
        else:
            delay = max(retry_after_seconds, 0.0)
        return min(delay, self.max_delay_seconds)

    @classmethod
    def from_settings(cls, settings: Any) -> PollingPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            default_delay_seconds=settings.default_retry_delay_seconds,
            max_delay_seconds=settings.max_retry_delay_seconds,
            max_total_wait_seconds=settings.max_total_wait_seconds,
        )


# ── Controller ───────────────────────────────────────────────────────


class PollingController:
    """Runs provisioning sequences to a terminal outcome.

    Args:
        client: Performs one provisioning round per call.
        policy: Retry budget and backoff.
        sleep: Awaitable used between rounds (``asyncio.sleep``).
    """

    def __init__(
        self,
        *,
        client: ProvisioningClient,
        policy: PollingPolicy | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._client = client
        self._policy = policy or PollingPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> PollingPolicy:
        return self._policy

    async def run(
        self,
        request: ProvisioningRequest,
        *,
        on_remote_id: RemoteIdCallback | None = None,
    ) -> ProvisioningOutcome:
        """Submit ``request`` until a terminal outcome.

        ``on_remote_id`` is awaited once, the first time a pending response
        carries a remote account id.
        """
        attempt = start_attempt(request.transaction_id)
        logger.info(
            'Provisioning started: transaction=%s server=%s platform=%s',
            request.transaction_id,
            request.server,
            request.platform,
        )

        while True:
            result = await self._client.submit_account(request)

            if isinstance(result, Pending):
                first_id = attempt.remote_id is None and bool(result.remote_id)
                attempt = record_response(
                    attempt,
                    to_state=WAITING_RETRY,
                    result_kind='pending',
                    remote_state=result.raw_state,
                    remote_id=result.remote_id,
                )
                if first_id and on_remote_id is not None:
                    await on_remote_id(attempt.remote_id)

                delay = self._policy.delay_for(result.retry_after_seconds)
                if self._budget_spent(attempt, delay):
                    attempt = transition(attempt, TIMED_OUT)
                    logger.warning(
                        'Provisioning timed out: transaction=%s attempts=%d remote_id=%s',
                        attempt.transaction_id,
                        attempt.attempts,
                        attempt.remote_id,
                    )
                    return ProvisioningTimedOut(
                        transaction_id=attempt.transaction_id,
                        attempts=attempt.attempts,
                        remote_id=attempt.remote_id,
                        elapsed_wait_seconds=attempt.elapsed_wait_seconds,
                    )

                logger.info(
                    'Provisioning pending: transaction=%s attempt=%d/%d state=%s, retrying in %.1fs',
                    attempt.transaction_id,
                    attempt.attempts,
                    self._policy.max_attempts,
                    result.raw_state or '-',
                    delay,
                )
                await self._sleep(delay)
                attempt = record_wait(attempt, delay)
                continue

            return self._finish(attempt, result)

    def _budget_spent(self, attempt: ProvisioningAttempt, next_delay: float) -> bool:
        if attempt.attempts >= self._policy.max_attempts:
            return True
        return (
            attempt.elapsed_wait_seconds + next_delay
            > self._policy.max_total_wait_seconds
        )

    def _finish(
        self,
        attempt: ProvisioningAttempt,
        result: SubmitResult,
    ) -> ProvisioningOutcome:
        if isinstance(result, Deployed):
            attempt = record_response(
                attempt,
                to_state=SUCCEEDED,
                result_kind='deployed',
                remote_state=result.raw_state,
                remote_id=result.remote_id,
            )
            logger.info(
                'Provisioning succeeded: transaction=%s remote_id=%s state=%s',
                attempt.transaction_id,
                result.remote_id,
                result.raw_state,
            )
            return ProvisioningSucceeded(
                transaction_id=attempt.transaction_id,
                attempts=attempt.attempts,
                remote_id=result.remote_id,
                raw_state=result.raw_state,
            )

        if isinstance(result, Failed):
            attempt = record_response(
                attempt,
                to_state=FAILED,
                result_kind='failed',
                remote_state=result.raw_state,
                remote_id=result.remote_id,
            )
            logger.warning(
                'Provisioning failed: transaction=%s remote_id=%s state=%s',
                attempt.transaction_id,
                attempt.remote_id,
                result.raw_state,
            )
            return ProvisioningFailed(
                transaction_id=attempt.transaction_id,
                attempts=attempt.attempts,
                remote_id=attempt.remote_id,
                raw_state=result.raw_state,
                message=result.message,
            )

        if isinstance(result, RemoteError):
            attempt = record_response(attempt, to_state=ERRORED, result_kind='remote_error')
            logger.warning(
                'Provisioning rejected: transaction=%s http_status=%d details=%s',
                attempt.transaction_id,
                result.http_status,
                result.details,
            )
            return ProvisioningErrored(
                transaction_id=attempt.transaction_id,
                attempts=attempt.attempts,
                message=result.message,
                details=result.details,
                http_status=result.http_status,
                remote_id=attempt.remote_id,
            )

        if isinstance(result, ProtocolError):
            message = result.message
            kind = 'protocol_error'
        else:
            message = 'Unexpected response from provisioning service'
            kind = 'unknown'

        attempt = record_response(attempt, to_state=ERRORED, result_kind=kind)
        logger.error(
            'Provisioning protocol error: transaction=%s: %s',
            attempt.transaction_id,
            message,
        )
        return ProvisioningErrored(
            transaction_id=attempt.transaction_id,
            attempts=attempt.attempts,
            message=message,
            remote_id=attempt.remote_id,
        )
