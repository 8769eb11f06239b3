"""Unit tests for JournalSettings."""

from trade_journal.app.settings import (
    DEFAULT_CORS_ORIGINS,
    DEFAULT_MAX_ATTEMPTS,
    JournalSettings,
)


def test_defaults_are_valid_for_local():
    settings = JournalSettings()
    assert settings.is_local
    assert settings.validate() == []
    assert settings.max_attempts == DEFAULT_MAX_ATTEMPTS == 30
    assert settings.provisioning_region == "london"
    assert settings.provisioning_magic == 123456


def test_non_local_requires_secrets():
    errors = JournalSettings(environment="production").validate()
    joined = "\n".join(errors)
    assert "supabase_url" in joined
    assert "supabase_service_role_key" in joined
    assert "meta_api_token" in joined
    assert "session_secret" in joined


def test_short_session_secret_rejected():
    settings = JournalSettings(
        environment="staging",
        supabase_url="https://x.supabase.co",
        supabase_service_role_key="k",
        meta_api_token="t",
        session_secret="short",
    )
    assert settings.validate() == ["staging: session_secret must be >= 32 characters"]


def test_polling_bounds_validated():
    errors = JournalSettings(
        max_attempts=0,
        default_retry_delay_seconds=30.0,
        max_retry_delay_seconds=10.0,
    ).validate()
    assert "max_attempts must be >= 1" in errors
    assert "max_retry_delay_seconds must be >= default_retry_delay_seconds" in errors


def test_from_env():
    settings = JournalSettings.from_env({
        "ENVIRONMENT": "dev",
        "SUPABASE_URL": "https://x.supabase.co",
        "META_API_ACCESS_TOKEN": "tok",
        "META_API_REGION": "new-york",
        "META_API_MAGIC": "42",
        "PROVISIONING_MAX_ATTEMPTS": "5",
        "PROVISIONING_RETRY_DELAY": "2.5",
        "CORS_ORIGINS": "https://a.test, https://b.test",
    })
    assert settings.environment == "dev"
    assert settings.meta_api_token == "tok"
    assert settings.provisioning_region == "new-york"
    assert settings.provisioning_magic == 42
    assert settings.max_attempts == 5
    assert settings.default_retry_delay_seconds == 2.5
    assert settings.cors_origins == ("https://a.test", "https://b.test")


def test_from_env_defaults():
    settings = JournalSettings.from_env({})
    assert settings.environment == "local"
    assert settings.cors_origins == DEFAULT_CORS_ORIGINS
    assert settings.request_timeout_seconds == 30.0
