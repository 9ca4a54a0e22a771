"""
Structured logging setup for the simulation, its CLI and tests.

Modules log through `structlog.get_logger(__name__)` with dotted event names
(`waterfall.collected`, `event.drawn`, `action.rejected`); this module decides
how those records are rendered.
"""

import logging
import sys
from typing import Optional

import structlog

from game_config import RuntimeSettings


def configure_logging(settings: Optional[RuntimeSettings] = None):
    """
    Configure structured logging for the current process.

    Args:
        settings: Runtime settings; read from the environment / .env when omitted

    Returns:
        structlog.BoundLogger bound with the service name
    """
    settings = settings or RuntimeSettings.from_env()
    level = getattr(logging, settings.log_level, logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    if settings.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
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

    return structlog.get_logger().bind(service="holdco-engine")
