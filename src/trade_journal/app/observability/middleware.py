"""Request correlation and access logging middleware.

``RequestIdMiddleware`` must be the outermost middleware so that the
request id is bound before anything else logs, including the auth guard's
401 responses.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import get_logger, request_id_ctx

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids are echoed back; anything else gets a fresh UUID.
_CLIENT_REQUEST_ID = re.compile(r"[A-Za-z0-9\-]{8,128}")

log = get_logger(__name__)


def resolve_request_id(raw: str | None) -> str:
    if raw and _CLIENT_REQUEST_ID.fullmatch(raw):
        return raw
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to ``request.state`` and the logging context."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = rid

        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access-log event per request.

    Includes the session user when the auth guard resolved one. Broker
    submissions block while provisioning polls, so durations of minutes
    are expected on ``POST /api/v1/broker``.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = round((time.monotonic() - started) * 1000, 2)

        identity = getattr(request.state, "auth_identity", None)
        event = log.warning if response.status_code >= 500 else log.info
        event(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=elapsed_ms,
            user_id=identity.user_id if identity is not None else None,
        )
        return response
