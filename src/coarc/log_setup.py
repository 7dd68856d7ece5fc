"""Structured logging for batch jobs (structlog over stdlib logging)."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from coarc.config import Settings

# Libraries that log every outbound request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON (production) or console (local) output."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@contextmanager
def job_context(job_name: str, run_id: str) -> Iterator[None]:
    """Bind ``job`` and ``run_id`` to every structlog event emitted inside the block."""
    structlog.contextvars.bind_contextvars(job=job_name, run_id=run_id)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("job", "run_id")
