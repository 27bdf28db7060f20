from __future__ import annotations

import contextvars
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional, Union

_RUN_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "survmon_run_id", default=None
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(run_id)s] %(name)s: %(message)s"


class _RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.run_id = _RUN_ID.get() or "-"
        return True


LogLevel = Union[int, str]


def _coerce_level(level: LogLevel) -> int:
    if isinstance(level, int):
        return level
    return logging._nameToLevel.get(level.upper(), logging.INFO)


def init_logger(name: str, level: LogLevel = "INFO") -> logging.Logger:
    """Configure the package logger once; child module loggers inherit it."""
    logger = logging.getLogger(name)
    level_value = _coerce_level(level)
    logger.setLevel(level_value)

    if not any(isinstance(f, _RunIdFilter) for f in logger.filters):
        logger.addFilter(_RunIdFilter())

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level_value)
        handler.addFilter(_RunIdFilter())
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def current_run_id() -> Optional[str]:
    return _RUN_ID.get()


@contextmanager
def run_context(
    logger: logging.Logger, run_id: Optional[str] = None
) -> Iterator[str]:
    if not any(isinstance(f, _RunIdFilter) for f in logger.filters):
        logger.addFilter(_RunIdFilter())

    active_id = run_id or uuid.uuid4().hex[:12]
    token = _RUN_ID.set(active_id)
    try:
        yield active_id
    finally:
        _RUN_ID.reset(token)


__all__ = ["LOG_FORMAT", "current_run_id", "init_logger", "run_context"]
