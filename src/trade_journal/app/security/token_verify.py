"""Access-token verification for trade journal sessions.

Bearer tokens are Supabase access tokens: RS256 with keys published at the
project's JWKS endpoint, or HS256 with a shared secret in local mode.
Only the ``authenticated`` audience is accepted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import jwt
from jwt import PyJWKClient, PyJWKClientError
from starlette.requests import Request

DEFAULT_AUDIENCE = 'authenticated'
JWKS_PATH = '/auth/v1/.well-known/jwks.json'
JWKS_CACHE_TTL_SECONDS = 300


@dataclass(frozen=True, slots=True)
class AuthIdentity:
    """The user a request acts for. ``user_id`` owns broker accounts."""

    user_id: str
    email: str = ''
    role: str = 'authenticated'
    raw_claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> AuthIdentity:
        sub = claims.get('sub')
        if not sub:
            raise TokenVerificationError('missing_sub_claim')
        return cls(
            user_id=str(sub),
            email=(claims.get('email') or '').lower(),
            role=claims.get('role') or 'authenticated',
            raw_claims=claims,
        )


class TokenVerificationError(Exception):
    """The presented credential is not acceptable.

    ``code`` is machine-readable and ends up in the 401 body.
    """

    def __init__(self, code: str, detail: str = '') -> None:
        super().__init__(f'{code}: {detail}' if detail else code)
        self.code = code
        self.detail = detail


# Checked in order; subclasses before InvalidTokenError.
_DECODE_ERRORS: tuple[tuple[type[Exception], str], ...] = (
    (jwt.ExpiredSignatureError, 'token_expired'),
    (jwt.InvalidAudienceError, 'invalid_audience'),
    (jwt.InvalidTokenError, 'invalid_token'),
)


def decode_claims(
    token: str,
    key: Any,
    *,
    algorithms: list[str],
    audience: str | None = None,
    required: tuple[str, ...] = ('sub', 'exp'),
) -> dict[str, Any]:
    """``jwt.decode`` with failures raised as ``TokenVerificationError``."""
    options = {'require': [*required, 'aud'] if audience else list(required)}
    try:
        return jwt.decode(
            token, key, algorithms=algorithms, audience=audience, options=options,
        )
    except jwt.InvalidTokenError as exc:
        code = next(c for kind, c in _DECODE_ERRORS if isinstance(exc, kind))
        detail = {
            'invalid_audience': f'expected {audience}',
            'invalid_token': str(exc),
        }.get(code, '')
        raise TokenVerificationError(code, detail) from exc


class KeyProvider(Protocol):
    def get_signing_key(self, token: str) -> Any: ...


class StaticKeyProvider:
    """Shared HS256 secret."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def get_signing_key(self, token: str) -> str:
        return self._secret


class JWKSKeyProvider:
    """Looks up the token's ``kid`` in the project JWKS; PyJWKClient caches it."""

    def __init__(self, jwks_url: str, cache_ttl: int = JWKS_CACHE_TTL_SECONDS) -> None:
        self._jwks = PyJWKClient(jwks_url, cache_jwk_set=True, lifespan=cache_ttl)

    def get_signing_key(self, token: str) -> Any:
        try:
            return self._jwks.get_signing_key_from_jwt(token).key
        except PyJWKClientError as exc:
            raise TokenVerificationError('jwks_fetch_error', str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            # Malformed header, no kid to look up.
            raise TokenVerificationError('invalid_token', str(exc)) from exc


class TokenVerifier:
    def __init__(
        self,
        key_provider: KeyProvider,
        audience: str = DEFAULT_AUDIENCE,
        algorithms: list[str] | None = None,
    ) -> None:
        self._key_provider = key_provider
        self._audience = audience
        self._algorithms = list(algorithms or ['RS256'])

    def verify(self, token: str) -> AuthIdentity:
        """Verify ``token`` and return its user.

        Raises:
            TokenVerificationError: Blank, expired, wrongly signed or
                addressed tokens, and tokens without a subject.
        """
        token = (token or '').strip()
        if not token:
            raise TokenVerificationError('empty_token')
        claims = decode_claims(
            token,
            self._key_provider.get_signing_key(token),
            algorithms=self._algorithms,
            audience=self._audience,
            required=('exp',),
        )
        return AuthIdentity.from_claims(claims)


def extract_bearer_token(request: Request) -> str | None:
    scheme, _, credentials = request.headers.get('authorization', '').partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return credentials.strip() or None


def create_token_verifier(
    supabase_url: str | None = None,
    jwt_secret: str | None = None,
    audience: str = DEFAULT_AUDIENCE,
) -> TokenVerifier:
    """Pick the key source from configuration.

    A ``jwt_secret`` wins over ``supabase_url``. With neither there is
    nothing to verify against and ``ValueError`` is raised.
    """
    if jwt_secret:
        return TokenVerifier(StaticKeyProvider(jwt_secret), audience, ['HS256'])
    if supabase_url:
        jwks = JWKSKeyProvider(supabase_url.rstrip('/') + JWKS_PATH)
        return TokenVerifier(jwks, audience, ['RS256'])
    raise ValueError('create_token_verifier needs jwt_secret or supabase_url')
