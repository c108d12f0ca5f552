"""Structured logging for the volume ranker.

Events are snake_case names with key/value fields. While a refresh runs,
the refresher binds the cycle number and then the timeframe being refreshed
via refresh_context(), so symbol-level events such as symbol_fetch_error or
daily_top_recorded show which cycle and timeframe produced them without
passing either value down the call chain.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Per-request DEBUG chatter from these would drown the per-cycle events
_NOISY_LOGGERS = ("ccxt", "asyncio", "httpx")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Route structlog and stdlib logging through a single stderr handler.

    Args:
        log_level: Root level name; unknown names fall back to INFO.
        log_format: "json" or "console". Defaults to the LOG_FORMAT
            environment variable, then "console".
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)


@contextmanager
def refresh_context(**values: object) -> Iterator[None]:
    """Bind refresh fields (cycle, timeframe) to every event logged inside.

    Only the given keys are restored on exit, so a timeframe context nested
    in a cycle context leaves the cycle bound.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield
