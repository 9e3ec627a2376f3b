"""Centralized logging setup for the console service."""

from __future__ import annotations

import logging

from certconsole.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_LEVEL = "INFO"


def _clean_level(value: str | None) -> str:
    if value is None:
        return DEFAULT_LOG_LEVEL
    return value.strip().strip('"').strip("'").upper() or DEFAULT_LOG_LEVEL


def configure_logging(service_name: str) -> None:
    """Configure root logger for console output."""
    level_name = _clean_level(settings.LOG_LEVEL)
    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(handler)

    # httpx logs every request line at INFO, including query strings.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logging.getLogger(__name__).info("Logging configured for %s (level=%s)", service_name, level_name)


def mask_key(key: str | None) -> str:
    if not key:
        return "<none>"
    if len(key) <= 12:
        return "***"
    return key[:7] + "..." + key[-4:]
