"""Supabase persistence for broker accounts."""

from .broker_account_repo import SupabaseBrokerAccountStore
from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from .supabase_client import SupabaseClient

__all__ = [
    "SupabaseAuthError",
    "SupabaseBrokerAccountStore",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseError",
    "SupabaseNotFoundError",
]
