"""Structured logging setup shared by the CLIs."""
import logging
import sys
from typing import Optional

import structlog

from docrag import config


def configure_logging(level: Optional[str] = None, json_logs: bool = False) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        level: Log level name (default from config)
        json_logs: Render JSON lines instead of the human-readable console format
    """
    level = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
