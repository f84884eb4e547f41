"""
Logging setup shared by the import pipeline and its HTTP adapter.

All modules log through ``logging.getLogger(__name__)``; this module wires a
single console handler once per process so pipeline stages, the session
service and the router emit lines in the same format.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional


_is_configured = False

# Third-party loggers that are chatty at INFO during bulk commits and uploads.
_QUIET_LOGGERS = ("sqlalchemy.engine", "multipart", "python_multipart")


def configure_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """
    Configure root and pipeline loggers unless that already happened.

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
        force: Re-apply the configuration even if it was applied before.
    """
    global _is_configured

    if _is_configured and not force:
        return

    log_level = (level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                }
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
            "loggers": {
                name: {"level": "WARNING"} for name in _QUIET_LOGGERS
            },
        }
    )

    logging.getLogger("bulk_import").setLevel(log_level)

    _is_configured = True
