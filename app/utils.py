"""
Shared helpers: logging and UTC clock.
"""
import logging
from datetime import date, datetime, timezone

from app.core import config

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, installing the console handler on first use."""
    global _configured
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root = logging.getLogger("app")
        root.addHandler(handler)
        root.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
        _configured = True
    return logging.getLogger(name if name.startswith("app") else f"app.{name}")


def utcnow() -> datetime:
    """Naive UTC timestamp; stored as-is so SQLite and PostgreSQL compare alike."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()
