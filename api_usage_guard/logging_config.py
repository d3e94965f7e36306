"""Logging configuration for API Usage Guard."""

import logging
import logging.config
import os
from typing import Optional


def setup_logging(log_level: Optional[str] = None) -> None:
    """
    Setup console logging for the application.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   Defaults to API_USAGE_GUARD_LOG_LEVEL env var or INFO.
    """
    if log_level is None:
        log_level = os.getenv("API_USAGE_GUARD_LOG_LEVEL", "INFO")

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(name)s: %(message)s"},
        },
        "handlers": {
            "console": {
                "class": "rich.logging.RichHandler",
                "formatter": "plain",
                "rich_tracebacks": True,
                "show_path": False,
            },
        },
        "root": {
            "level": log_level.upper(),
            "handlers": ["console"],
        },
    })
