"""
Centralized logging configuration for recordkit.

Libraries should not install handlers on import, so nothing here runs until
``setup_logging()`` is called by the application.
"""

from __future__ import annotations

import logging
import logging.config
import sys
from typing import Any

from recordkit.config import Settings, get_settings

LOGGER_NAMESPACE = "recordkit"


def get_logging_config(settings: Settings | None = None) -> dict[str, Any]:
    """Get the logging configuration dictionary."""
    settings = settings or get_settings()
    log_level = settings.log_level.upper()
    logger_level = "DEBUG" if settings.debug else log_level

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(name)-24s | %(levelname)-8s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": logger_level,
                "formatter": "standard",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            LOGGER_NAMESPACE: {
                "level": logger_level,
                "handlers": ["console"],
                "propagate": False,
            },
            # Third-party loggers
            "asyncpg": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            "aiosqlite": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    if settings.log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "detailed",
            "filename": settings.log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
        }
        config["loggers"][LOGGER_NAMESPACE]["handlers"].append("file")

    return config


def setup_logging(settings: Settings | None = None) -> None:
    """Apply the logging configuration."""
    settings = settings or get_settings()
    logging.config.dictConfig(get_logging_config(settings))
    get_logger("logging").debug("Logging configured with level: %s", settings.log_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger inside the ``recordkit`` hierarchy.

    Args:
        name: Logger name (typically ``__name__`` of the module)
    """
    if name != LOGGER_NAMESPACE and not name.startswith(LOGGER_NAMESPACE + "."):
        name = f"{LOGGER_NAMESPACE}.{name}"
    return logging.getLogger(name)
