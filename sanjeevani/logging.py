"""Structured logging configuration with structlog.

Called once from settings. Production emits JSON lines for log
aggregation; every other environment gets the console renderer.

Usage::

    import structlog
    log = structlog.get_logger(__name__)
    log.info("queue_entry_joined", entry_id=entry.id, token=entry.token_number)
"""
import logging
import sys

import structlog
from structlog.typing import Processor


def configure_structlog(environment: str = "production", level: str = "INFO") -> None:
    """Configure structlog and route stdlib logging to stderr at ``level``."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
