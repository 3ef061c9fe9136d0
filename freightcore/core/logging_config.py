"""
Structured logging setup.
"""

import logging
from typing import Optional

import structlog

from freightcore.core.config import ConfigManager, get_config


def configure_logging(config_manager: Optional[ConfigManager] = None) -> None:
    """
    Configure structlog for the settlement core.

    Args:
        config_manager: Optional config manager (defaults to global instance)
    """
    config_manager = config_manager or get_config()
    level = getattr(logging, config_manager.env.log_level.upper(), logging.INFO)

    if config_manager.env.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
