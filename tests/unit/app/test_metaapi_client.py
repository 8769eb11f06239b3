"""Unit tests for MetaApiProvisioningClient.

Tests response classification and the HTTP contract with a mocked httpx
client.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from trade_journal.app.providers.metaapi_client import (
    Deployed,
    Failed,
    MetaApiError,
    MetaApiNotFoundError,
    MetaApiProvisioningClient,
    Pending,
    ProtocolError,
    RemoteError,
    classify_response,
    parse_retry_after,
    retry_hint_seconds,
)
from trade_journal.app.provisioning.request import (
    BrokerCredentials,
    build_provisioning_request,
)

TID = 'c0ffee00c0ffee00c0ffee00c0ffee00'


def _request():
    return build_provisioning_request(
        BrokerCredentials(
            account_number='12345678',
            password='pw',
            broker_name='ICMarkets',
            platform='mt5',
            server='ICMarketsSC-Demo',
        ),
        transaction_id=TID,
        region='london',
        magic=123456,
    )


def _make_client(**kwargs) -> MetaApiProvisioningClient:
    return MetaApiProvisioningClient(
        auth_token='test-meta-token',
        base_url='https://provisioning.test/',
        **kwargs,
    )


# ── Classification ────────────────────────────────────────────────


def test_201_deployed_is_deployed():
    result = classify_response(httpx.Response(201, json={'id': 'acc-1', 'state': 'DEPLOYED'}))
    assert result == Deployed(remote_id='acc-1', raw_state='DEPLOYED')


def test_201_without_state_counts_as_created():
    result = classify_response(httpx.Response(201, json={'id': 'acc-1'}))
    assert result == Deployed(remote_id='acc-1', raw_state='CREATED')


def test_200_without_state_is_not_success():
    result = classify_response(httpx.Response(200, json={'id': 'acc-1'}))
    assert isinstance(result, Failed)


def test_state_is_case_insensitive():
    result = classify_response(httpx.Response(200, json={'id': 'acc-1', 'state': 'deployed'}))
    assert isinstance(result, Deployed)


def test_failure_state_is_failed():
    result = classify_response(
        httpx.Response(200, json={'id': 'acc-1', 'state': 'DEPLOY_FAILED'})
    )
    assert isinstance(result, Failed)
    assert result.remote_id == 'acc-1'
    assert 'DEPLOY_FAILED' in result.message


def test_failure_state_keeps_provider_message():
    result = classify_response(
        httpx.Response(200, json={'id': 'acc-1', 'state': 'FAILED', 'message': 'Bad server'})
    )
    assert isinstance(result, Failed)
    assert result.message == 'Bad server'


def test_unknown_state_is_failed_not_success():
    result = classify_response(httpx.Response(200, json={'id': 'acc-1', 'state': 'WEIRD'}))
    assert isinstance(result, Failed)
    assert "'WEIRD'" in result.message


def test_in_progress_state_is_pending():
    result = classify_response(
        httpx.Response(200, json={'id': 'acc-1', 'state': 'DEPLOYING'})
    )
    assert result == Pending(remote_id='acc-1', raw_state='DEPLOYING')


def test_retry_message_is_pending():
    result = classify_response(
        httpx.Response(
            200,
            json={'id': 'acc-1', 'state': 'X', 'message': 'Please retry in 2 minutes'},
        )
    )
    assert isinstance(result, Pending)
    assert result.retry_after_seconds == 120.0


def test_202_is_pending_with_retry_after_header():
    result = classify_response(
        httpx.Response(
            202,
            json={'id': 'acc-1', 'state': 'DEPLOYING'},
            headers={'Retry-After': '15'},
        )
    )
    assert result == Pending(remote_id='acc-1', raw_state='DEPLOYING', retry_after_seconds=15.0)


def test_202_without_body_is_pending():
    result = classify_response(httpx.Response(202))
    assert result == Pending(remote_id=None, raw_state='')


def test_202_with_nan_retry_after_has_no_hint():
    result = classify_response(
        httpx.Response(202, json={'id': 'acc-1'}, headers={'Retry-After': 'nan'})
    )
    assert result == Pending(remote_id='acc-1', raw_state='', retry_after_seconds=None)


def test_202_message_hint_used_without_header():
    result = classify_response(
        httpx.Response(202, json={'message': 'Account is being created, retry in 30 seconds'})
    )
    assert isinstance(result, Pending)
    assert result.retry_after_seconds == 30.0


def test_error_with_known_detail_code_is_translated():
    result = classify_response(
        httpx.Response(401, json={'error': 'Unauthorized', 'details': 'E_AUTH'})
    )
    assert isinstance(result, RemoteError)
    assert result.http_status == 401
    assert result.message == 'Authentication failed. Please check login/password/server'
    assert result.details == 'E_AUTH'


def test_error_with_message_passes_it_through():
    result = classify_response(
        httpx.Response(400, json={'message': 'Validation failed', 'details': [{'parameter': 'server'}]})
    )
    assert isinstance(result, RemoteError)
    assert result.message == 'Validation failed'
    assert result.details == [{'parameter': 'server'}]


def test_error_without_json_body():
    result = classify_response(httpx.Response(503, text='<html>down</html>'))
    assert result == RemoteError(http_status=503, message='HTTP 503')


@pytest.mark.parametrize('resp', [
    httpx.Response(204),
    httpx.Response(200, text='not json'),
    httpx.Response(200, json=['acc-1']),
    httpx.Response(201, json={'state': 'DEPLOYED'}),
])
def test_malformed_success_is_protocol_error(resp):
    assert isinstance(classify_response(resp), ProtocolError)


# ── Retry hints ───────────────────────────────────────────────────


def test_parse_retry_after_seconds():
    assert parse_retry_after('30') == 30.0
    assert parse_retry_after(' 2.5 ') == 2.5
    assert parse_retry_after('-4') == 0.0


def test_parse_retry_after_http_date():
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert parse_retry_after('Mon, 01 Jan 2024 12:00:45 GMT', now=now) == 45.0


def test_parse_retry_after_invalid():
    assert parse_retry_after(None) is None
    assert parse_retry_after('') is None
    assert parse_retry_after('soon') is None
    assert parse_retry_after('nan') is None
    assert parse_retry_after('inf') is None
    assert parse_retry_after('-infinity') is None


def test_retry_hint_seconds():
    assert retry_hint_seconds('retry in 5 seconds') == 5.0
    assert retry_hint_seconds('Retry after 1 minute') == 60.0
    assert retry_hint_seconds('retry in 500ms') == 0.5
    assert retry_hint_seconds('retry in 2 mins') == 120.0
    assert retry_hint_seconds('retry in 3 sec') == 3.0
    assert retry_hint_seconds('retry in 4 milliseconds') == 0.004
    assert retry_hint_seconds('no hint here') is None
    assert retry_hint_seconds(None) is None


# ── HTTP contract ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_submit_sends_payload_and_headers():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(
        return_value=httpx.Response(201, json={'id': 'acc-1', 'state': 'DEPLOYED'})
    )
    client = _make_client(http_client=mock_http)
    req = _request()

    result = await client.submit_account(req)

    assert result == Deployed(remote_id='acc-1', raw_state='DEPLOYED')
    call = mock_http.request.call_args
    assert call.args[0] == 'POST'
    assert call.args[1] == 'https://provisioning.test/users/current/accounts'
    headers = call.kwargs['headers']
    assert headers['auth-token'] == 'test-meta-token'
    assert headers['transaction-id'] == TID
    assert call.kwargs['content'] == req.payload
    assert json.loads(call.kwargs['content'])['login'] == '12345678'


@pytest.mark.asyncio
async def test_resubmission_sends_identical_bytes():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(return_value=httpx.Response(202))
    client = _make_client(http_client=mock_http)
    req = _request()

    await client.submit_account(req)
    await client.submit_account(req)

    first, second = mock_http.request.call_args_list
    assert first.kwargs['content'] == second.kwargs['content']
    assert first.kwargs['headers']['transaction-id'] == second.kwargs['headers']['transaction-id']


@pytest.mark.asyncio
async def test_submit_timeout_is_remote_error():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(side_effect=httpx.ReadTimeout('timed out'))
    client = _make_client(http_client=mock_http)

    result = await client.submit_account(_request())

    assert isinstance(result, RemoteError)
    assert result.http_status == 0
    assert 'did not respond' in result.message


@pytest.mark.asyncio
async def test_submit_connect_error_is_remote_error():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(side_effect=httpx.ConnectError('refused'))
    client = _make_client(http_client=mock_http)

    result = await client.submit_account(_request())

    assert isinstance(result, RemoteError)
    assert result.message == 'Provisioning service is unreachable'


@pytest.mark.asyncio
async def test_submit_with_mock_transport():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={'id': 'acc-9'}, headers={'Retry-After': '3'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = _make_client(http_client=http)
        result = await client.submit_account(_request())

    assert result == Pending(remote_id='acc-9', raw_state='', retry_after_seconds=3.0)
    assert seen[0].headers['transaction-id'] == TID
    assert seen[0].headers['content-type'] == 'application/json'


@pytest.mark.asyncio
async def test_get_account_returns_body():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(
        return_value=httpx.Response(200, json={'_id': 'acc-1', 'state': 'DEPLOYED'})
    )
    client = _make_client(http_client=mock_http)

    data = await client.get_account('acc-1')

    assert data['state'] == 'DEPLOYED'
    call = mock_http.request.call_args
    assert call.args[0] == 'GET'
    assert call.args[1].endswith('/users/current/accounts/acc-1')
    assert 'transaction-id' not in call.kwargs['headers']


@pytest.mark.asyncio
async def test_get_account_not_found():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(
        return_value=httpx.Response(404, json={'message': 'Account not found'})
    )
    client = _make_client(http_client=mock_http)

    with pytest.raises(MetaApiNotFoundError):
        await client.get_account('missing')


@pytest.mark.asyncio
async def test_get_account_server_error():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(return_value=httpx.Response(500))
    client = _make_client(http_client=mock_http)

    with pytest.raises(MetaApiError) as exc_info:
        await client.get_account('acc-1')
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_get_account_connect_error_is_metaapi_error():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(side_effect=httpx.ConnectError('connection refused'))
    client = _make_client(http_client=mock_http)

    with pytest.raises(MetaApiError) as exc_info:
        await client.get_account('acc-1')
    assert exc_info.value.status_code == 0
    assert exc_info.value.message == 'Provisioning service is unreachable'


@pytest.mark.asyncio
async def test_get_account_timeout_is_metaapi_error():
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(side_effect=httpx.ReadTimeout('slow'))
    client = _make_client(http_client=mock_http)

    with pytest.raises(MetaApiError) as exc_info:
        await client.get_account('acc-1')
    assert exc_info.value.status_code == 0


def test_constructor_requires_token():
    with pytest.raises(ValueError):
        MetaApiProvisioningClient(auth_token='', base_url='https://x')


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    mock_http = AsyncMock()
    client = _make_client(http_client=mock_http)
    await client.aclose()
    mock_http.aclose.assert_not_called()
