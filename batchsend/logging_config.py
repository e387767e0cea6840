"""
Structured logging for batch runs.

Every record goes through structlog's processor chain, including the stdlib
loggers used by the store and the RPC client. Per-transfer outcomes are
emitted on the dedicated ``transfer`` logger so they can be routed or
filtered apart from operational logs, and every line written during a run
carries the ``batch_id`` and ``payer`` bound by :func:`batch_context`.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import IO, Iterator, Optional

import structlog

from .config import settings

TRANSFER_LOGGER = "transfer"

# Chatty at INFO; only their warnings are worth keeping
QUIET_LOGGERS = ("httpcore", "httpx", "sqlalchemy.engine")


def get_transfer_logger() -> structlog.stdlib.BoundLogger:
    """Logger for one-line-per-transfer outcome events."""
    return structlog.stdlib.get_logger(TRANSFER_LOGGER)


@contextmanager
def batch_context(payer: str, batch_id: Optional[str] = None) -> Iterator[str]:
    """Bind ``batch_id`` and ``payer`` to every log line emitted inside the block.

    Yields the batch id, generating a short random one when none is given.
    """
    batch_id = batch_id or uuid.uuid4().hex[:8]
    with structlog.contextvars.bound_contextvars(batch_id=batch_id, payer=payer):
        yield batch_id


def _use_console(level: int, log_format: str) -> bool:
    if log_format == "console":
        return True
    if log_format == "json":
        return False
    # auto: readable output while debugging, JSON otherwise
    return level == logging.DEBUG


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Override log level (default: settings.log_level)
        log_format: "json", "console" or "auto" (default: settings.log_format)
        stream: Where to write log lines (default: stdout)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    console = _use_console(level, (log_format or settings.log_format).lower())

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if console:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
