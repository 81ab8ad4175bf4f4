"""
Logging setup for the import service.

Everything logs through ``logging.getLogger(__name__)`` to one console handler.
The import pipeline (``crm_import.domain.imports`` and the lock manager) gets
its own level, so chunk progress can be silenced on a busy server or traced
at DEBUG without turning up the whole app.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Dict, Optional

IMPORT_LOGGERS = ("crm_import.domain.imports", "crm_import.utils.locks")

_is_configured = False


def build_logging_config(level: Optional[str] = None, import_level: Optional[str] = None) -> Dict[str, Any]:
    app_level = (level or "INFO").upper()
    pipeline_level = (import_level or app_level).upper()

    loggers: Dict[str, Any] = {
        "crm_import": {"level": app_level},
        # SQL echo is noisy at INFO during chunked imports
        "sqlalchemy.engine": {"level": "WARNING"},
        # Status polling would otherwise log one access line per poll
        "uvicorn.access": {"level": "WARNING"},
    }
    for name in IMPORT_LOGGERS:
        loggers[name] = {"level": pipeline_level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        },
        "handlers": {
            # Levels are decided per logger; the handler passes everything through
            "console": {"class": "logging.StreamHandler", "formatter": "standard"},
        },
        "root": {"handlers": ["console"], "level": app_level},
        "loggers": loggers,
    }


def configure_logging(level: Optional[str] = None, import_level: Optional[str] = None) -> None:
    """
    Configure logging once per process.

    Args:
        level: Level for the root and ``crm_import`` loggers (default INFO).
        import_level: Level for the import pipeline loggers; defaults to ``level``.
    """
    global _is_configured

    if _is_configured:
        return

    dictConfig(build_logging_config(level, import_level))
    logging.getLogger(__name__).debug("Logging configured")
    _is_configured = True
