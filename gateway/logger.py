"""Logging setup shared by the gateway core and the HTTP layer.

Core modules log through ``LOGGER``. The ``api`` package uses
``logging.getLogger(__name__)``; those loggers are children of ``api`` and
get the same handler through ``API_LOGGER_NAME``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Iterable, Optional

GATEWAY_LOGGER_NAME = "ask_gateway"
API_LOGGER_NAME = "api"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(level: Optional[int] = None) -> int:
    """Explicit level, else DEBUG when ``DEBUG_GATEWAY=true``, else INFO."""
    if level is not None:
        return level
    debug = os.getenv("DEBUG_GATEWAY", "false").lower() == "true"
    return logging.DEBUG if debug else logging.INFO


def setup_logger(name: str = GATEWAY_LOGGER_NAME, level: Optional[int] = None) -> logging.Logger:
    """Return a logger writing to stdout. Re-running replaces its handlers."""
    level = resolve_level(level)

    logger = logging.getLogger(name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    logger.setLevel(level)
    logger.propagate = False

    return logger


def configure_logging(
    names: Iterable[str] = (GATEWAY_LOGGER_NAME, API_LOGGER_NAME),
    level: Optional[int] = None,
) -> None:
    """Configure every gateway logger tree at one level."""
    for name in names:
        setup_logger(name, level)


LOGGER: logging.Logger = setup_logger()

__all__ = [
    "API_LOGGER_NAME",
    "GATEWAY_LOGGER_NAME",
    "LOGGER",
    "configure_logging",
    "resolve_level",
    "setup_logger",
]
