"""Project logger; relay records carry ``request_id`` and ``outcome`` as structured fields."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, MutableMapping

from virtualchef.config.settings import settings


LOG_FILE_NAME = "virtualchef.log"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10
CONTEXT_FIELDS = ("request_id", "outcome")
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s outcome=%(outcome)s | %(message)s"


class ContextDefaultsFilter(logging.Filter):
    """Fills missing context fields with ``-`` so the shared format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


class RequestLogger(logging.LoggerAdapter):
    """Binds one request id; per-call ``extra`` (e.g. ``outcome``) is merged on top."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def _level_from_name(raw: str) -> int:
    level = logging.getLevelName(str(raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger("virtualchef")
    if configured_logger.handlers:
        return configured_logger

    level = _level_from_name(settings.log_level)
    configured_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    context_filter = ContextDefaultsFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(log_dir / LOG_FILE_NAME, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
            )
        except OSError:
            # unwritable log dir: stderr only
            pass

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        configured_logger.addHandler(handler)

    configured_logger.propagate = False
    return configured_logger


logger = _build_logger()


def get_logger(name: str) -> logging.Logger:
    return logger.getChild(name)


def request_logger(base: logging.Logger, request_id: str) -> RequestLogger:
    return RequestLogger(base, {"request_id": request_id})
