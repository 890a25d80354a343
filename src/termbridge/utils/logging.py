"""Logging setup utilities for termbridge.

Routes the application's loggers and the ASGI server's loggers to the
same handlers, configured from ``LoggingConfig``.
"""

from __future__ import annotations

import logging
import sys

from termbridge.config.settings import LoggingConfig

# Loggers that receive the configured handlers
MANAGED_LOGGERS = ("termbridge", "uvicorn")

# Per-request lines from uvicorn are only shown at DEBUG
ACCESS_LOGGER = "uvicorn.access"


def _build_handlers(config: LoggingConfig) -> list[logging.Handler]:
    formatter = logging.Formatter(config.format)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure logging for termbridge and the server it runs under.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    level = getattr(logging, config.level.upper(), logging.INFO)
    handlers = _build_handlers(config)

    for name in MANAGED_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.propagate = False
        for old in list(logger.handlers):
            logger.removeHandler(old)
            old.close()
        for handler in handlers:
            logger.addHandler(handler)

    logging.getLogger(ACCESS_LOGGER).setLevel(
        logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    )
    logging.getLogger("termbridge").info("Logging initialized at %s level", config.level)
