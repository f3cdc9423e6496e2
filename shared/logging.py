"""
Structured logging for the pipeline.

Every record is a single JSON line. The job being processed, the stage it is
in and the scene being worked on are carried in a context variable, so log
calls deep inside a backend are attributed without threading ids through.
Each job task (and each per-scene task gathered from it) runs in its own
context copy.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from shared.config import settings

CONTEXT_FIELDS = ("job_id", "stage", "scene_id")

_log_context: ContextVar[Dict[str, str]] = ContextVar("log_context", default={})

# Attributes every LogRecord has; anything else arrived through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render a record, its context and its `extra` fields as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_log_context.get())

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = value if isinstance(value, (str, int, float, bool, type(None))) else str(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a pipeline component, e.g. "stage_orchestrator".

    Handlers (stdout and a rotating `pipeline.log` under LOG_DIR) are attached
    on first use only.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    formatter = JSONFormatter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(log_dir / "pipeline.log", maxBytes=50 * 1024 * 1024, backupCount=5)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


def bind_log_context(**fields: Optional[str]) -> None:
    """Set (or with None, drop) context fields for the current task."""
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
    context = dict(_log_context.get())
    for key, value in fields.items():
        if value is None:
            context.pop(key, None)
        else:
            context[key] = str(value)
    _log_context.set(context)


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
    """Bind context fields for the duration of a block."""
    token = _log_context.set(dict(_log_context.get()))
    try:
        bind_log_context(**fields)
        yield
    finally:
        _log_context.reset(token)


def clear_log_context() -> None:
    _log_context.set({})


def set_job_id(job_id: Optional[str]) -> None:
    bind_log_context(job_id=job_id)


def get_job_id() -> Optional[str]:
    return _log_context.get().get("job_id")
