"""Logging setup for the API, the scheduler process and the CLI scripts."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path

from pydantic import ValidationError

from plansync.config import get_settings

_configured = False

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Match and unmatch decisions are also written to their own file
MATCH_LOGGERS = ("plansync.services.activity_matcher", "plansync.services.match_repository")

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "apscheduler", "alembic.runtime.migration")


def build_logging_config(log_dir: Path, level: str) -> dict:
    """Return the dictConfig payload: console + app.log on root, matching.log for match decisions."""
    quiet_level = level if level == "DEBUG" else "WARNING"

    loggers: dict[str, dict] = {name: {"level": quiet_level} for name in _QUIET_LOGGERS}
    for name in MATCH_LOGGERS:
        loggers[name] = {"handlers": ["matching"], "propagate": True}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": LOG_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": level,
            },
            "file": {
                "class": "logging.FileHandler",
                "filename": str(log_dir / "app.log"),
                "encoding": "utf-8",
                "formatter": "standard",
                "level": level,
            },
            "matching": {
                "class": "logging.FileHandler",
                "filename": str(log_dir / "matching.log"),
                "encoding": "utf-8",
                "formatter": "standard",
                "level": "INFO",
            },
        },
        "loggers": loggers,
        "root": {"level": level, "handlers": ["console", "file"]},
    }


def configure_logging() -> None:
    """Configure logging once per process; later calls are no-ops."""

    global _configured
    if _configured:
        return

    try:
        settings = get_settings()
        log_dir, level = settings.log_dir, settings.log_level
    except ValidationError:
        # An invalid LOG_LEVEL (or similar) must not stop the process from logging
        log_dir, level = Path("logs"), "INFO"
    log_dir.mkdir(parents=True, exist_ok=True)

    dictConfig(build_logging_config(log_dir, level))
    logging.getLogger(__name__).debug("Logging configured (level=%s, dir=%s)", level, log_dir)
    _configured = True
