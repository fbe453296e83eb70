"""Logging configuration for jailrun.

The library only ever logs through module loggers under the ``jailrun``
namespace. Applications that want console output call ``configure_logging()``.
"""

import logging
import sys
from typing import Literal

from jailrun.settings import get_settings

# Loggers of libraries we drive that are chatty at DEBUG
NOISY_LOGGERS = [
    "asyncio",
]


def suppress_noisy_loggers() -> None:
    """Keep third-party loggers at WARNING+."""
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
) -> None:
    """Configure console logging for the ``jailrun`` namespace.

    Sets up:
    - A single stderr handler on the ``jailrun`` logger
    - The configured level (argument, then settings.log_level)
    - asyncio debug chatter suppressed to WARNING+

    Args:
        level: Override log level (defaults to settings.log_level)
    """
    log_level = level or get_settings().log_level

    app_logger = logging.getLogger("jailrun")
    app_logger.setLevel(getattr(logging, log_level))
    app_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level))
    console_handler.setFormatter(
        logging.Formatter(
            "%(levelname)s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    app_logger.addHandler(console_handler)
    app_logger.propagate = False

    suppress_noisy_loggers()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
