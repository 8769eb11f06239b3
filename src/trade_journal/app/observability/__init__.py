"""Structured logging and request-ID correlation for the trade journal app.

Quick start::

    from trade_journal.app.observability import configure_logging
    from trade_journal.app.observability.middleware import (
        RequestIdMiddleware,
        RequestLoggingMiddleware,
    )

    configure_logging()
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
"""

from .logging import configure_logging, get_logger, request_id_ctx

__all__ = [
    "configure_logging",
    "get_logger",
    "request_id_ctx",
]
