"""Session resolution for the trade journal app."""

from .auth_guard import (
    AuthGuardMiddleware,
    get_auth_identity,
)
from .token_verify import (
    AuthIdentity,
    StaticKeyProvider,
    TokenVerificationError,
    TokenVerifier,
    create_token_verifier,
    extract_bearer_token,
)

__all__ = [
    'AuthGuardMiddleware',
    'AuthIdentity',
    'StaticKeyProvider',
    'TokenVerificationError',
    'TokenVerifier',
    'create_token_verifier',
    'extract_bearer_token',
    'get_auth_identity',
]
