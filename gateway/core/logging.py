"""
core/logging.py
---------------
Structured logging using structlog.
DEBUG=true  → human-readable console output
DEBUG=false → JSON, one object per line, tracebacks rendered into "exception"

Every event is a short message plus key/value context. The session core
always passes tenant_id; state changes add previous/state, sends add
kind/message_id/response_time_ms, sweeps add started/skipped/failed.
Authenticated requests bind tenant_id into the context with bind_tenant(),
so lines logged further down the request (services, audit) carry it too.
"""

import logging
import sys

import structlog

from gateway.core.config import settings

# Libraries that log every request or statement at INFO
_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")


def configure_logging() -> None:
    log_level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    if not settings.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.DEBUG:
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()


def bind_tenant(tenant_id: str) -> None:
    """Attach tenant_id to every log line of the current request."""
    structlog.contextvars.bind_contextvars(tenant_id=tenant_id)


def get_logger(name: str = __name__):
    return structlog.get_logger(name)
