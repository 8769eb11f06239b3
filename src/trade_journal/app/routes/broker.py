"""Broker account connection API.

  POST /api/v1/broker                                  → connect a broker account
  GET  /api/v1/broker/status/{account_id}              → live provider status
  GET  /api/v1/broker/accounts                         → list accounts (?status=)
  POST /api/v1/broker/accounts/{account_id}/disconnect → mark DISCONNECTED
  POST /api/v1/broker/accounts/sync                    → refresh last_synced_at

All endpoints require authentication via ``get_auth_identity``. The user id
always comes from the verified identity, never from the request body.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from trade_journal.app.providers.metaapi_client import (
    MetaApiError,
    MetaApiNotFoundError,
)
from trade_journal.app.provisioning.request import BrokerCredentials
from trade_journal.app.provisioning.service import (
    BrokerConnectionResult,
    BrokerConnectionService,
)
from trade_journal.app.provisioning.status import BrokerAccountStatus
from trade_journal.app.security.auth_guard import get_auth_identity
from trade_journal.app.security.token_verify import AuthIdentity

RESULT_STATUS_CODES: dict[str, int] = {
    'connected': 200,
    'disconnected': 200,
    'invalid_request': 422,
    'remote_error': 400,
    'provider_unavailable': 502,
    'deploy_failed': 502,
    'protocol_error': 502,
    'store_error': 502,
    'timeout': 504,
    'unauthenticated': 401,
    'not_found': 404,
}


# ── Request schemas ───────────────────────────────────────────────────


class BrokerConnectionRequest(BaseModel):
    account_number: str = Field(min_length=1, description='MetaTrader login.')
    password: str = Field(min_length=1)
    broker_name: str = Field(min_length=1)
    platform: str = Field(min_length=1, description="'mt4' or 'mt5'.")
    server: str = Field(min_length=1, description='Broker trading server name.')

    def to_credentials(self) -> BrokerCredentials:
        return BrokerCredentials(
            account_number=self.account_number,
            password=self.password,
            broker_name=self.broker_name,
            platform=self.platform,
            server=self.server,
        )


# ── Response helpers ──────────────────────────────────────────────────


def _result_response(result: BrokerConnectionResult) -> JSONResponse:
    status_code = RESULT_STATUS_CODES.get(
        result.code, 200 if result.success else 500,
    )
    return JSONResponse(status_code=status_code, content=result.to_dict())


def _not_found(account_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            'error': 'not_found',
            'detail': f'Broker account {account_id!r} not found.',
        },
    )


# ── Route factory ─────────────────────────────────────────────────────


def create_broker_router(service: BrokerConnectionService) -> APIRouter:
    """Create the broker account router.

    Args:
        service: Connection service bound to a store and provider client.

    Returns:
        FastAPI router with broker account endpoints.
    """
    router = APIRouter(tags=['broker'])

    @router.post('/api/v1/broker')
    async def submit_broker_connection(
        body: BrokerConnectionRequest,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Provision the account with the provider and save it locally.

        Blocks until the provider reports a terminal state or the polling
        budget is spent.
        """
        result = await service.submit_broker_connection(
            identity.user_id, body.to_credentials(),
        )
        return _result_response(result)

    @router.get('/api/v1/broker/status/{account_id}')
    async def get_account_status(
        account_id: str,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        try:
            status = await service.get_remote_status(identity.user_id, account_id)
        except MetaApiNotFoundError:
            return _not_found(account_id)
        except MetaApiError as exc:
            return JSONResponse(
                status_code=502,
                content={
                    'error': 'remote_error',
                    'detail': exc.message or str(exc),
                },
            )
        if status is None:
            return _not_found(account_id)
        return status

    @router.get('/api/v1/broker/accounts')
    async def list_accounts(
        status: BrokerAccountStatus | None = None,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        accounts = await service.list_accounts(identity.user_id, status=status)
        return {'accounts': accounts, 'count': len(accounts)}

    @router.post('/api/v1/broker/accounts/sync')
    async def sync_accounts(
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        summary = await service.sync_accounts(identity.user_id)
        if summary.total_count == 0:
            message = 'No active accounts to sync'
        else:
            message = f'Synced {summary.synced_count} of {summary.total_count} accounts'
        return {
            'success': summary.total_count > 0 and summary.failed_count == 0,
            'message': message,
            'synced_count': summary.synced_count,
            'failed_count': summary.failed_count,
            'total_count': summary.total_count,
            'failed_accounts': list(summary.failed_accounts),
        }

    @router.post('/api/v1/broker/accounts/{account_id}/disconnect')
    async def disconnect_account(
        account_id: str,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        result = await service.disconnect_account(identity.user_id, account_id)
        if result.code == 'not_found':
            return _not_found(account_id)
        return _result_response(result)

    return router
