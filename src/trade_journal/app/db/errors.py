"""Storage errors raised by the PostgREST client.

Repositories and the connection service only ever see these, never an
``httpx.Response`` (which would carry the service-role key in its request).
"""

from __future__ import annotations


class SupabaseError(Exception):
    """A PostgREST request failed."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint
        super().__init__(status_code, message)

    @property
    def is_transient(self) -> bool:
        """5xx responses may succeed on a later attempt."""
        return self.status_code >= 500

    def __str__(self) -> str:
        text = f"Supabase request failed ({self.status_code}): {self.message}"
        if self.code:
            text += f" [{self.code}]"
        if self.details:
            text += f" {self.details}"
        return text


class SupabaseAuthError(SupabaseError):
    """401/403: bad service key or row-level security."""


class SupabaseNotFoundError(SupabaseError):
    """404: table or route does not exist."""


class SupabaseConflictError(SupabaseError):
    """409: unique constraint violated."""


_ERRORS_BY_STATUS: dict[int, type[SupabaseError]] = {
    401: SupabaseAuthError,
    403: SupabaseAuthError,
    404: SupabaseNotFoundError,
    409: SupabaseConflictError,
}


def error_class_for_status(status_code: int) -> type[SupabaseError]:
    return _ERRORS_BY_STATUS.get(status_code, SupabaseError)
