"""Runtime configuration for the trade journal backend.

``create_app()`` takes a ``JournalSettings`` instance; only ``run()`` reads
the process environment (through ``JournalSettings.from_env``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

DEFAULT_PROVISIONING_URL = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"
DEFAULT_REGION = "london"
DEFAULT_MAGIC = 123456
DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_RETRY_DELAY_SECONDS = 10.0
DEFAULT_MAX_RETRY_DELAY_SECONDS = 60.0
DEFAULT_MAX_TOTAL_WAIT_SECONDS = 900.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:3000")

MIN_SESSION_SECRET_LENGTH = 32


def _csv(raw: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    items = tuple(part.strip() for part in (raw or "").split(",") if part.strip())
    return items or default


@dataclass(frozen=True, slots=True)
class JournalSettings:
    """Settings for one deployment.

    The defaults describe a local developer machine: in-memory storage, a
    stand-in provisioning client and no CORS beyond the Vite/Next ports.
    Every other environment has to provide Supabase, MetaApi and session
    secrets, which ``validate()`` enforces.
    """

    environment: str = "local"

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    # HS256 secret for access tokens; JWKS is used when empty.
    supabase_jwt_secret: str = ""
    session_secret: str = ""

    # ── MetaApi ────────────────────────────────────────────────────
    meta_api_token: str = ""
    meta_api_provisioning_url: str = DEFAULT_PROVISIONING_URL
    provisioning_region: str = DEFAULT_REGION
    provisioning_magic: int = DEFAULT_MAGIC
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # ── Polling ────────────────────────────────────────────────────
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    default_retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    max_retry_delay_seconds: float = DEFAULT_MAX_RETRY_DELAY_SECONDS
    max_total_wait_seconds: float = DEFAULT_MAX_TOTAL_WAIT_SECONDS

    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def _missing_secrets(self) -> list[str]:
        required = {
            "supabase_url": self.supabase_url,
            "supabase_service_role_key": self.supabase_service_role_key,
            "meta_api_token": self.meta_api_token,
        }
        problems = [f"{self.environment}: {name} is required" for name, value in required.items() if not value]
        if len(self.session_secret) < MIN_SESSION_SECRET_LENGTH:
            problems.append(
                f"{self.environment}: session_secret must be >= {MIN_SESSION_SECRET_LENGTH} characters"
            )
        return problems

    def validate(self) -> list[str]:
        """Collect every configuration problem; an empty list means usable."""
        problems: list[str] = []
        if self.max_attempts < 1:
            problems.append("max_attempts must be >= 1")
        if self.default_retry_delay_seconds < 0:
            problems.append("default_retry_delay_seconds must be >= 0")
        if self.max_retry_delay_seconds < self.default_retry_delay_seconds:
            problems.append("max_retry_delay_seconds must be >= default_retry_delay_seconds")
        if not self.is_local:
            problems.extend(self._missing_secrets())
        return problems

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> JournalSettings:
        """Read settings from ``env`` (``os.environ`` by default)."""
        source = os.environ if env is None else env

        def number(name: str, default: float, kind: type = float):
            raw = source.get(name)
            return kind(raw) if raw else kind(default)

        return cls(
            environment=source.get("ENVIRONMENT") or "local",
            supabase_url=source.get("SUPABASE_URL", ""),
            supabase_service_role_key=source.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            supabase_jwt_secret=source.get("SUPABASE_JWT_SECRET", ""),
            session_secret=source.get("SESSION_SECRET", ""),
            meta_api_token=source.get("META_API_ACCESS_TOKEN", ""),
            meta_api_provisioning_url=source.get("META_API_PROVISIONING_URL") or DEFAULT_PROVISIONING_URL,
            provisioning_region=source.get("META_API_REGION") or DEFAULT_REGION,
            provisioning_magic=number("META_API_MAGIC", DEFAULT_MAGIC, int),
            request_timeout_seconds=number("META_API_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_attempts=number("PROVISIONING_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, int),
            default_retry_delay_seconds=number("PROVISIONING_RETRY_DELAY", DEFAULT_RETRY_DELAY_SECONDS),
            max_retry_delay_seconds=number("PROVISIONING_MAX_RETRY_DELAY", DEFAULT_MAX_RETRY_DELAY_SECONDS),
            max_total_wait_seconds=number("PROVISIONING_MAX_TOTAL_WAIT", DEFAULT_MAX_TOTAL_WAIT_SECONDS),
            cors_origins=_csv(source.get("CORS_ORIGINS"), DEFAULT_CORS_ORIGINS),
        )
