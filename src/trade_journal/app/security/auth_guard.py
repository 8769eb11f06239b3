"""Authentication middleware and the route dependency built on it.

Every non-exempt request must carry either a bearer access token or the
signed ``journal_session`` cookie; the bearer header wins when both are
present. The resolved user lands on ``request.state.auth_identity``.
"""

from __future__ import annotations

from fastapi import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from .token_verify import (
    AuthIdentity,
    TokenVerificationError,
    TokenVerifier,
    decode_claims,
    extract_bearer_token,
)

SESSION_COOKIE_NAME = 'journal_session'
DEFAULT_EXEMPT_PREFIXES: tuple[str, ...] = ('/health', '/docs', '/openapi.json')

_CHALLENGE = {'WWW-Authenticate': 'Bearer'}
_NO_CREDENTIALS = ('no_credentials', 'Authentication required')


def _error_body(code: str, detail: str) -> dict[str, str]:
    return {'error': 'unauthorized', 'code': code, 'detail': detail}


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests outside ``exempt_prefixes``.

    Cookie sessions are only honoured when ``session_secret`` is set.
    """

    def __init__(
        self,
        app: ASGIApp,
        token_verifier: TokenVerifier,
        exempt_prefixes: tuple[str, ...] = DEFAULT_EXEMPT_PREFIXES,
        session_secret: str | None = None,
        session_cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        super().__init__(app)
        self.token_verifier = token_verifier
        self.exempt_prefixes = exempt_prefixes
        self.session_secret = session_secret
        self.session_cookie_name = session_cookie_name

    def _identity_from_cookie(self, cookie: str) -> AuthIdentity:
        try:
            claims = decode_claims(cookie, self.session_secret, algorithms=['HS256'])
        except TokenVerificationError as exc:
            if exc.code == 'token_expired':
                raise TokenVerificationError('session_expired', 'Session has expired') from exc
            raise TokenVerificationError('invalid_session', 'Session cookie is invalid') from exc
        return AuthIdentity.from_claims(claims)

    def resolve(self, request: Request) -> AuthIdentity | None:
        """Return the request's user, ``None`` when no credential was sent.

        Raises:
            TokenVerificationError: A credential was sent but is not valid.
        """
        token = extract_bearer_token(request)
        if token:
            return self.token_verifier.verify(token)
        cookie = request.cookies.get(self.session_cookie_name) if self.session_secret else None
        if cookie:
            return self._identity_from_cookie(cookie)
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.auth_identity = None
        path = request.url.path
        if request.method == 'OPTIONS' or path.startswith(self.exempt_prefixes):
            return await call_next(request)

        try:
            identity = self.resolve(request)
        except TokenVerificationError as exc:
            return JSONResponse(_error_body(exc.code, exc.detail), 401, headers=_CHALLENGE)
        if identity is None:
            return JSONResponse(_error_body(*_NO_CREDENTIALS), 401, headers=_CHALLENGE)

        request.state.auth_identity = identity
        return await call_next(request)


def get_auth_identity(request: Request) -> AuthIdentity:
    """Route dependency: the guard's user, or 401 when there is none."""
    identity = getattr(request.state, 'auth_identity', None)
    if identity is None:
        raise HTTPException(401, detail=_error_body(*_NO_CREDENTIALS), headers=_CHALLENGE)
    return identity
