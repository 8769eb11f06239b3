"""Unit tests for transaction id generation."""

from __future__ import annotations

import pytest

from trade_journal.app.provisioning.transaction_id import (
    TRANSACTION_ID_LENGTH,
    generate_transaction_id,
    is_valid_transaction_id,
)


def test_generated_id_is_32_lowercase_hex_chars():
    tid = generate_transaction_id()
    assert len(tid) == TRANSACTION_ID_LENGTH == 32
    assert all(c in '0123456789abcdef' for c in tid)


def test_generated_ids_are_unique():
    ids = {generate_transaction_id() for _ in range(500)}
    assert len(ids) == 500


def test_generated_id_is_valid():
    assert is_valid_transaction_id(generate_transaction_id())


@pytest.mark.parametrize('value', [
    '',
    'abc',
    'g' * 32,
    'a' * 31,
    'a' * 33,
    'A' * 32,
    None,
])
def test_rejects_malformed_ids(value):
    assert not is_valid_transaction_id(value)
