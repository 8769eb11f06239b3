"""Correlation tokens for broker provisioning attempts.

The provider treats repeated submissions carrying the same payload and
``transaction-id`` header as one logical request, so one token is minted
per provisioning attempt and reused for every round of that attempt.
"""

from __future__ import annotations

import re
import secrets

TRANSACTION_ID_LENGTH = 32

_TRANSACTION_ID_RE = re.compile(rf'^[0-9a-f]{{{TRANSACTION_ID_LENGTH}}}$')


def generate_transaction_id() -> str:
    """Return a fresh 32-character lowercase hex token."""
    return secrets.token_hex(TRANSACTION_ID_LENGTH // 2)


def is_valid_transaction_id(value: str) -> bool:
    return bool(_TRANSACTION_ID_RE.match(value or ''))
