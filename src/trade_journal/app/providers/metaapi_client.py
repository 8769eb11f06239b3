"""Async HTTP client for the MetaApi account-provisioning API.

``submit_account`` performs exactly one provisioning round and classifies
the response into one of five outcomes:

  Deployed      -- 200/201 with a deployed or created account state
  Failed        -- 200/201 with a failure (or unknown) account state
  Pending       -- 202, or 200/201 with an in-progress state or retry hint
  RemoteError   -- HTTP >= 400 or a transport failure
  ProtocolError -- anything that is not the expected JSON envelope

Resubmitting the same payload with the same ``transaction-id`` is the
provider's status-check mechanism, so the client never alters the request
between rounds. Auth uses the static ``auth-token`` header (server-side
only).
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Union

import httpx

from ..provisioning.request import ProvisioningRequest

logger = logging.getLogger(__name__)

ACCOUNTS_PATH = "/users/current/accounts"

# Remote state vocabulary. The provider may add states at any time;
# anything not listed here is treated as unexpected, never as success.
DEPLOYED_STATES = frozenset({"DEPLOYED", "CREATED"})
IN_PROGRESS_STATES = frozenset({"DEPLOYING", "UNDEPLOYING"})
UNDEPLOYED_STATES = frozenset({"UNDEPLOYED"})
FAILURE_MARKER = "FAIL"
RETRY_HINT = "retry"

# Provider detail codes translated into user-facing text.
DETAIL_MESSAGES: dict[str, str] = {
    "E_SRV_NOT_FOUND": "Server file not found for specified broker/server",
    "E_AUTH": "Authentication failed. Please check login/password/server",
    "E_SERVER_TIMEZONE": (
        "Settings detection in progress or failed. Please retry later"
    ),
    "E_NO_SYMBOLS": (
        "No symbols found for the account. Please check the server name"
    ),
}

_RETRY_IN_RE = re.compile(
    r"retry\s+(?:in|after)\s+(\d+(?:\.\d+)?)\s*"
    r"(ms|milliseconds?|seconds?|secs?|s|minutes?|mins?|m)\b",
    re.IGNORECASE,
)


# ── Outcomes ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Deployed:
    remote_id: str
    raw_state: str


@dataclass(frozen=True, slots=True)
class Failed:
    remote_id: str | None
    raw_state: str
    message: str


@dataclass(frozen=True, slots=True)
class Pending:
    remote_id: str | None
    raw_state: str
    retry_after_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class RemoteError:
    http_status: int
    message: str
    details: Any = None


@dataclass(frozen=True, slots=True)
class ProtocolError:
    message: str


SubmitResult = Union[Deployed, Failed, Pending, RemoteError, ProtocolError]


# ── Exceptions (status lookups) ──────────────────────────────────


class MetaApiError(Exception):
    """Raised by lookups when MetaApi returns an error response."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        *,
        details: Any = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(f"MetaApi error {status_code}: {message}")


class MetaApiNotFoundError(MetaApiError):
    """Account not found (404)."""

    def __init__(self, message: str = "Account not found", **kwargs: Any) -> None:
        super().__init__(404, message, **kwargs)


# ── Parsing helpers ──────────────────────────────────────────────


def translate_error(payload: Any, status_code: int) -> tuple[str, Any]:
    """Return ``(user_message, details)`` for an error response body."""
    if not isinstance(payload, dict):
        return f"HTTP {status_code}", None
    details = payload.get("details")
    if isinstance(details, str) and details in DETAIL_MESSAGES:
        return DETAIL_MESSAGES[details], details
    message = payload.get("message") or payload.get("error")
    if isinstance(message, str) and message.strip():
        return message.strip(), details
    return f"HTTP {status_code}", details


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        # float() also accepts "nan" and "inf".
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((when - now).total_seconds(), 0.0)


def retry_hint_seconds(message: str | None) -> float | None:
    """Extract "retry in N minutes/seconds" from a provider message."""
    if not message:
        return None
    match = _RETRY_IN_RE.search(message)
    if not match:
        return None
    amount = float(match.group(1))
    unit = match.group(2).lower()
    if unit == "ms" or unit.startswith("milli"):
        return amount / 1000
    if unit.startswith("m"):
        return amount * 60
    return amount


def _has_retry_hint(message: Any) -> bool:
    return isinstance(message, str) and RETRY_HINT in message.lower()


def _json_object(resp: httpx.Response) -> dict[str, Any] | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def classify_response(resp: httpx.Response) -> SubmitResult:
    """Classify one provisioning response into exactly one outcome."""
    status = resp.status_code

    if status >= 400:
        payload: Any
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        message, details = translate_error(payload, status)
        return RemoteError(http_status=status, message=message, details=details)

    if status == 202:
        body = _json_object(resp) or {}
        message = body.get("message")
        retry_after = parse_retry_after(resp.headers.get("retry-after"))
        if retry_after is None:
            retry_after = retry_hint_seconds(message)
        return Pending(
            remote_id=body.get("id") or None,
            raw_state=str(body.get("state") or ""),
            retry_after_seconds=retry_after,
        )

    if status not in (200, 201):
        return ProtocolError(message=f"Unexpected HTTP status {status}")

    body = _json_object(resp)
    if body is None:
        return ProtocolError(message="Response body is not a JSON object")

    remote_id = body.get("id")
    if not isinstance(remote_id, str) or not remote_id:
        return ProtocolError(message="Response is missing the account id")

    raw_state = str(body.get("state") or "").strip().upper()
    if not raw_state and status == 201:
        raw_state = "CREATED"
    message = body.get("message")

    if raw_state in DEPLOYED_STATES:
        return Deployed(remote_id=remote_id, raw_state=raw_state)
    if FAILURE_MARKER in raw_state:
        return Failed(
            remote_id=remote_id,
            raw_state=raw_state,
            message=message or f"Account deployment failed ({raw_state})",
        )
    if raw_state in IN_PROGRESS_STATES or _has_retry_hint(message):
        retry_after = parse_retry_after(resp.headers.get("retry-after"))
        if retry_after is None:
            retry_after = retry_hint_seconds(message)
        return Pending(
            remote_id=remote_id,
            raw_state=raw_state,
            retry_after_seconds=retry_after,
        )
    return Failed(
        remote_id=remote_id,
        raw_state=raw_state,
        message=f"Unexpected account state {raw_state!r} from provider",
    )


# ── Client ───────────────────────────────────────────────────────


class MetaApiProvisioningClient:
    """Async client for MetaApi account provisioning.

    The client holds no per-sequence state; it can be shared by any
    number of concurrent provisioning sequences.
    """

    def __init__(
        self,
        *,
        auth_token: str,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not auth_token:
            raise ValueError("auth_token is required")
        if not base_url:
            raise ValueError("base_url is required")

        self._auth_token = auth_token
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._timeout = float(timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, transaction_id: str | None = None) -> dict[str, str]:
        # Never log these headers.
        headers = {
            "auth-token": self._auth_token,
            "Accept": "application/json",
        }
        if transaction_id:
            headers["transaction-id"] = transaction_id
            headers["Content-Type"] = "application/json"
        return headers

    async def submit_account(self, request: ProvisioningRequest) -> SubmitResult:
        """Send one provisioning round for ``request``."""
        url = f"{self._base_url}{ACCOUNTS_PATH}"
        try:
            resp = await self._client.request(
                "POST",
                url,
                headers=self._headers(request.transaction_id),
                content=request.payload,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning(
                "MetaApi provisioning request timed out (transaction=%s)",
                request.transaction_id,
            )
            return RemoteError(
                http_status=0,
                message="Provisioning service did not respond in time",
                details=str(exc) or None,
            )
        except httpx.TransportError as exc:
            logger.warning(
                "MetaApi provisioning request failed (transaction=%s): %s",
                request.transaction_id,
                exc,
            )
            return RemoteError(
                http_status=0,
                message="Provisioning service is unreachable",
                details=str(exc) or None,
            )

        result = classify_response(resp)
        logger.debug(
            "MetaApi provisioning round: status=%d outcome=%s",
            resp.status_code,
            type(result).__name__,
            extra={"transaction_id": request.transaction_id},
        )
        return result

    async def get_account(self, account_id: str) -> dict[str, Any]:
        """Fetch remote account metadata by provider id.

        Raises MetaApiNotFoundError if the account doesn't exist, and
        MetaApiError (status 0) when the provider cannot be reached.
        """
        url = f"{self._base_url}{ACCOUNTS_PATH}/{account_id}"
        try:
            resp = await self._client.request(
                "GET",
                url,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("MetaApi account lookup timed out (account=%s)", account_id)
            raise MetaApiError(0, "Provisioning service did not respond in time") from exc
        except httpx.TransportError as exc:
            logger.warning("MetaApi account lookup failed (account=%s): %s", account_id, exc)
            raise MetaApiError(0, "Provisioning service is unreachable") from exc
        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            message, details = translate_error(payload, resp.status_code)
            if resp.status_code == 404:
                raise MetaApiNotFoundError(message=message, details=details)
            raise MetaApiError(resp.status_code, message, details=details)

        body = _json_object(resp)
        if body is None:
            raise MetaApiError(0, "Response body is not a JSON object")
        return body
