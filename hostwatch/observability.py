"""Structured logging setup shared by every engine component."""

import logging
import sys

import structlog

from hostwatch.config import LoggingConfig


def configure_logging(config: LoggingConfig | None = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    JSON output for deployed engines, a readable console renderer for
    development.
    """
    config = config or LoggingConfig()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, config.level),
        force=True,
    )

    renderer: structlog.types.Processor
    if config.format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
