"""ASGI application for the broker connection API.

``create_app()`` assembles the app from settings plus optional overrides for
the store, the provisioning client and the token verifier. Anything not
overridden is built from settings: in-memory stand-ins in local mode,
Supabase and MetaApi everywhere else.

    app = create_app(JournalSettings.from_env())
    app = create_app(settings, broker_store=store, provisioning_client=fake)
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .inmemory import InMemoryBrokerAccountStore, InMemoryProvisioningClient
from .observability.middleware import RequestIdMiddleware, RequestLoggingMiddleware
from .protocols import BrokerAccountStore, ProvisioningClient, RemoteAccountReader
from .provisioning.controller import PollingController, PollingPolicy, SleepFn
from .provisioning.service import BrokerConnectionService
from .routes.broker import create_broker_router
from .security.auth_guard import AuthGuardMiddleware
from .security.token_verify import TokenVerifier, create_token_verifier
from .settings import JournalSettings

logger = logging.getLogger(__name__)

# Only ever used with ENVIRONMENT=local when no secret is configured.
LOCAL_DEV_JWT_SECRET = "local-dev-jwt-secret-not-for-production"


@dataclass(frozen=True)
class AppDependencies:
    """What the app was wired with; kept on ``app.state.deps``."""

    broker_store: BrokerAccountStore
    provisioning_client: ProvisioningClient
    service: BrokerConnectionService
    closeables: tuple[Any, ...] = ()


def _build_store(settings: JournalSettings) -> tuple[BrokerAccountStore, Any | None]:
    if settings.is_local and not settings.supabase_url:
        return InMemoryBrokerAccountStore(), None

    from .db import SupabaseBrokerAccountStore, SupabaseClient

    client = SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        timeout_seconds=settings.request_timeout_seconds,
    )
    return SupabaseBrokerAccountStore(client), client


def _build_provisioning_client(settings: JournalSettings) -> ProvisioningClient:
    if settings.is_local and not settings.meta_api_token:
        logger.warning(
            "META_API_ACCESS_TOKEN not set; using in-memory provisioning client"
        )
        return InMemoryProvisioningClient()

    from .providers.metaapi_client import MetaApiProvisioningClient

    return MetaApiProvisioningClient(
        auth_token=settings.meta_api_token,
        base_url=settings.meta_api_provisioning_url,
        timeout_seconds=settings.request_timeout_seconds,
    )


def _build_token_verifier(settings: JournalSettings) -> TokenVerifier:
    if settings.is_local and not (settings.supabase_url or settings.supabase_jwt_secret):
        return create_token_verifier(
            jwt_secret=settings.session_secret or LOCAL_DEV_JWT_SECRET,
        )
    return create_token_verifier(
        supabase_url=settings.supabase_url or None,
        jwt_secret=settings.supabase_jwt_secret or None,
    )


def create_app(
    settings: JournalSettings | None = None,
    *,
    broker_store: BrokerAccountStore | None = None,
    provisioning_client: ProvisioningClient | None = None,
    token_verifier: TokenVerifier | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> FastAPI:
    """Build the app. Omitted dependencies are derived from ``settings``.

    Args:
        settings: Defaults to ``JournalSettings()`` (local).
        broker_store: Store override. When None, local mode without a
            Supabase URL uses the in-memory store; otherwise a Supabase
            store is built from settings.
        provisioning_client: Provider override. When None, a MetaApi
            client is built from settings (in-memory in local mode without
            a token).
        token_verifier: Access token verifier override.
        sleep: Backoff sleep used by the polling controller.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = JournalSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Trade journal settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    closeables: list[Any] = []
    if broker_store is None:
        broker_store, db_client = _build_store(settings)
        if db_client is not None:
            closeables.append(db_client)
    if provisioning_client is None:
        provisioning_client = _build_provisioning_client(settings)
        closeables.append(provisioning_client)
    if token_verifier is None:
        token_verifier = _build_token_verifier(settings)

    controller = PollingController(
        client=provisioning_client,
        policy=PollingPolicy.from_settings(settings),
        sleep=sleep,
    )
    reader = (
        provisioning_client
        if isinstance(provisioning_client, RemoteAccountReader)
        else None
    )
    service = BrokerConnectionService(
        controller=controller,
        store=broker_store,
        region=settings.provisioning_region,
        magic=settings.provisioning_magic,
        account_reader=reader,
    )
    deps = AppDependencies(
        broker_store=broker_store,
        provisioning_client=provisioning_client,
        service=service,
        closeables=tuple(closeables),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Trade journal startup (environment=%s)", settings.environment)
        yield
        for resource in deps.closeables:
            await resource.aclose()
        logger.info("Trade journal shutdown")

    app = FastAPI(
        title="Trade Journal API",
        description="Broker account connection API for the trading journal",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware ──────────────────────────────────────────────
    # Last added runs first: request id, access log, auth, CORS.

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        AuthGuardMiddleware,
        token_verifier=token_verifier,
        session_secret=settings.session_secret or None,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    app.include_router(create_broker_router(service))

    return app


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    import uvicorn

    from .observability import configure_logging

    configure_logging()
    uvicorn.run(
        create_app(JournalSettings.from_env()),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_config=None,
    )


# For uvicorn directly (local settings), use --factory:
#   uvicorn trade_journal.app.main:create_app --factory
