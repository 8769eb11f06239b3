"""Immutable broker provisioning request.

A ``ProvisioningRequest`` is built once per provisioning attempt. The JSON
body is serialized at construction time and the same bytes are sent on
every round, together with the same transaction id.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from .transaction_id import is_valid_transaction_id


@dataclass(frozen=True, slots=True)
class BrokerCredentials:
    """MetaTrader credentials as submitted by the user."""

    account_number: str
    password: str = field(repr=False)
    broker_name: str
    platform: str
    server: str

    def missing_fields(self) -> list[str]:
        """Names of required fields that are empty after stripping."""
        return [
            name
            for name in ('account_number', 'password', 'broker_name', 'platform', 'server')
            if not str(getattr(self, name) or '').strip()
        ]


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    """Credentials, provider tags, and correlation token for one attempt.

    Use :func:`build_provisioning_request`; ``payload`` must be the
    serialized form of the other fields.
    """

    login: str
    password: str = field(repr=False)
    broker_name: str
    server: str
    platform: str
    region: str
    magic: int
    keywords: tuple[str, ...]
    transaction_id: str
    payload: bytes = field(repr=False)


def _serialize(
    *,
    login: str,
    password: str,
    broker_name: str,
    server: str,
    platform: str,
    region: str,
    magic: int,
    keywords: tuple[str, ...],
) -> bytes:
    body = {
        'login': login,
        'password': password,
        'name': broker_name,
        'server': server,
        'platform': platform,
        'keywords': list(keywords),
        'magic': magic,
        'region': region,
    }
    return json.dumps(body, sort_keys=True, separators=(',', ':')).encode('utf-8')


def build_provisioning_request(
    credentials: BrokerCredentials,
    *,
    transaction_id: str,
    region: str,
    magic: int,
) -> ProvisioningRequest:
    """Freeze credentials and tags into a request with a fixed payload.

    Raises:
        ValueError: If a credential field is empty or the transaction id
            is not a 32-character hex token.
    """
    missing = credentials.missing_fields()
    if missing:
        raise ValueError(f'missing broker fields: {", ".join(missing)}')
    if not is_valid_transaction_id(transaction_id):
        raise ValueError(f'invalid transaction id: {transaction_id!r}')

    login = credentials.account_number.strip()
    broker_name = credentials.broker_name.strip()
    server = credentials.server.strip()
    platform = credentials.platform.strip().lower()
    keywords = (broker_name,)

    payload = _serialize(
        login=login,
        password=credentials.password,
        broker_name=broker_name,
        server=server,
        platform=platform,
        region=region,
        magic=magic,
        keywords=keywords,
    )
    return ProvisioningRequest(
        login=login,
        password=credentials.password,
        broker_name=broker_name,
        server=server,
        platform=platform,
        region=region,
        magic=magic,
        keywords=keywords,
        transaction_id=transaction_id,
        payload=payload,
    )
