"""Structured logging for the trade journal backend.

One structlog pipeline renders both structlog events and records from
stdlib loggers (library modules use ``logging.getLogger(__name__)``), so
every line carries a timestamp, level, logger name, and the current
request id.

Broker credentials travel through this service, so the pipeline masks any
event key that names a secret before rendering.

Usage::

    from trade_journal.app.observability.logging import configure_logging, get_logger

    configure_logging()  # once, at process start
    log = get_logger(__name__)
    log.info("broker_connected", account_id="acc-1")
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "***"
SECRET_KEYS = frozenset({
    "password",
    "auth_token",
    "auth-token",
    "authorization",
    "access_token",
    "service_role_key",
    "session_secret",
    "meta_api_token",
})

# Third-party loggers and the level they are held at.
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

_configured = False


def _add_request_id(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for key in event_dict.keys() & SECRET_KEYS:
        event_dict[key] = REDACTED
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _renderer(json_output: bool) -> Any:
    if json_output:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Install the structlog pipeline on the root logger.

    Args:
        level: Level name; falls back to ``LOG_LEVEL`` then INFO.
        json_output: JSON lines when true, console output when false;
            falls back to ``LOG_FORMAT`` (``json`` unless set otherwise).

    Only the first call has any effect.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json").lower() == "json"

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_output),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    numeric_level = logging.getLevelName(level_name)
    root.setLevel(numeric_level if isinstance(numeric_level, int) else logging.INFO)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def _reset_for_tests() -> None:
    global _configured
    _configured = False
