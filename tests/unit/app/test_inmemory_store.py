"""Unit tests for the in-memory broker account store and provider."""

from __future__ import annotations

import pytest

from trade_journal.app.inmemory import (
    InMemoryBrokerAccountStore,
    InMemoryProvisioningClient,
)
from trade_journal.app.protocols import BrokerAccountStore, RemoteAccountReader
from trade_journal.app.providers.metaapi_client import Deployed, MetaApiNotFoundError
from trade_journal.app.provisioning.request import (
    BrokerCredentials,
    build_provisioning_request,
)

FIELDS = {
    'user_id': 'user-1',
    'broker_name': 'ICMarkets',
    'platform': 'mt5',
    'server': 'ICMarketsSC-Demo',
    'account_number': '12345678',
}


@pytest.fixture
def store():
    return InMemoryBrokerAccountStore()


def test_satisfies_protocol(store):
    assert isinstance(store, BrokerAccountStore)


@pytest.mark.asyncio
async def test_upsert_creates_record(store):
    record = await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'INITIALIZING'})

    assert record['meta_api_account_id'] == 'acc-1'
    assert record['status'] == 'INITIALIZING'
    assert record['id'].startswith('ba_')
    assert record['last_synced_at'] is None
    assert len(store) == 1


@pytest.mark.asyncio
async def test_upsert_updates_existing_without_duplicating(store):
    first = await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'INITIALIZING'})
    second = await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'ACTIVE'})

    assert len(store) == 1
    assert second['id'] == first['id']
    assert second['created_at'] == first['created_at']
    assert second['status'] == 'ACTIVE'


@pytest.mark.asyncio
async def test_repeated_upsert_is_noop(store):
    first = await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'ACTIVE'})
    second = await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'ACTIVE'})

    assert second == first


@pytest.mark.asyncio
async def test_upsert_does_not_reassign_owner(store):
    await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'ACTIVE'})
    record = await store.upsert_by_remote_id('acc-1', {**FIELDS, 'user_id': 'intruder'})
    assert record['user_id'] == 'user-1'


@pytest.mark.asyncio
async def test_upsert_requires_remote_id(store):
    with pytest.raises(ValueError):
        await store.upsert_by_remote_id('', FIELDS)


@pytest.mark.asyncio
async def test_returned_records_are_copies(store):
    record = await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'ACTIVE'})
    record['status'] = 'ERROR'
    fetched = await store.get_by_remote_id('acc-1')
    assert fetched['status'] == 'ACTIVE'


@pytest.mark.asyncio
async def test_list_for_user_filters_by_owner_and_status(store):
    await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'ACTIVE'})
    await store.upsert_by_remote_id('acc-2', {**FIELDS, 'status': 'ERROR'})
    await store.upsert_by_remote_id('acc-3', {**FIELDS, 'user_id': 'user-2', 'status': 'ACTIVE'})

    mine = await store.list_for_user('user-1')
    active = await store.list_for_user('user-1', status='ACTIVE')

    assert {r['meta_api_account_id'] for r in mine} == {'acc-1', 'acc-2'}
    assert [r['meta_api_account_id'] for r in active] == ['acc-1']


@pytest.mark.asyncio
async def test_update_by_remote_id(store):
    await store.upsert_by_remote_id('acc-1', {**FIELDS, 'status': 'ACTIVE'})

    updated = await store.update_by_remote_id('acc-1', {'status': 'DISCONNECTED'})
    missing = await store.update_by_remote_id('nope', {'status': 'DISCONNECTED'})

    assert updated['status'] == 'DISCONNECTED'
    assert missing is None


# ── Provider stand-in ─────────────────────────────────────────────


def _request(tid: str):
    return build_provisioning_request(
        BrokerCredentials('1', 'pw', 'Broker', 'mt4', 'Broker-Live'),
        transaction_id=tid,
        region='london',
        magic=1,
    )


@pytest.mark.asyncio
async def test_provider_reuses_remote_id_for_same_transaction():
    client = InMemoryProvisioningClient()
    req = _request('1' * 32)

    first = await client.submit_account(req)
    second = await client.submit_account(req)

    assert isinstance(first, Deployed)
    assert first.remote_id == second.remote_id
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_provider_lookup():
    client = InMemoryProvisioningClient()
    assert isinstance(client, RemoteAccountReader)

    result = await client.submit_account(_request('2' * 32))
    account = await client.get_account(result.remote_id)

    assert account['state'] == 'DEPLOYED'
    with pytest.raises(MetaApiNotFoundError):
        await client.get_account('missing')
