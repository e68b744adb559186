"""Structured logging helpers.

Log lines are emitted as single JSON objects so they stay grep-able and can be
shipped to a collector unchanged::

    log_event(logger, logging.INFO, "unicord.gateway.ready", shard_id=0)
    # {"event": "unicord.gateway.ready", "shard_id": 0}
"""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 3
_MAX_FIELD_CHARS = 500


def sanitize_log_value(value: Any) -> Any:
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"[:_MAX_FIELD_CHARS]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value[:_MAX_FIELD_CHARS]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_log_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): sanitize_log_value(item) for key, item in value.items()}
    return str(value)[:_MAX_FIELD_CHARS]


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"event": event}
    for key, value in fields.items():
        payload[key] = sanitize_log_value(value)
    exc = fields.get("exc")
    logger.log(
        level,
        json.dumps(payload, default=str, ensure_ascii=False),
        exc_info=exc if isinstance(exc, BaseException) and level >= logging.ERROR else None,
    )


def setup_rotating_logger(
    name: str,
    log_path: Optional[Path],
    *,
    level: int = logging.INFO,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
) -> logging.Logger:
    """Return a logger writing to ``log_path`` (or stderr when unset)."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    handler: logging.Handler
    if log_path is None:
        handler = logging.StreamHandler()
    else:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
    return logger
