"""
Structured logging built on structlog.

Development renders colored console lines; every other environment emits JSON
so attestation events (roots, periods, ledger transaction hashes) can be
shipped to a log store and correlated per business.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import cast

import structlog
from structlog.types import Processor

from veritasor.core.config import Settings, get_settings

# Outbound HTTP clients log every request at INFO, which would leak query
# strings (revenue ranges, business ids) into the stream.
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and route stdlib logging through stdout."""
    settings = settings or get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Processor
    if settings.environment == "development":
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(sort_keys=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def attestation_log_context(*, business_id: str, period: str) -> Iterator[None]:
    """Bind business and period to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(business_id=business_id, period=period):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with the given name."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
