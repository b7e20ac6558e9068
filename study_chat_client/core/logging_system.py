"""Logger factory with per-request context.

``SessionLogger.get_logger`` hands out ordinary stdlib loggers that carry a
filter stamping each record with the request id active in the current task,
so interleaved streams and retries can be told apart in one log.
"""

from __future__ import annotations

import contextlib
import logging
import secrets
from contextvars import ContextVar
from typing import Iterator, Optional

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"


class _RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = SessionLogger.request_id.get() or "-"
        return True


class SessionLogger:
    """Namespace for logging context shared across the client."""

    request_id: ContextVar[Optional[str]] = ContextVar("study_chat_request_id", default=None)
    _filter = _RequestContextFilter()

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        logger = logging.getLogger(name)
        if cls._filter not in logger.filters:
            logger.addFilter(cls._filter)
        return logger

    @classmethod
    @contextlib.contextmanager
    def request_context(cls, request_id: Optional[str] = None) -> Iterator[str]:
        """Bind a request id for the duration of the block."""
        value = request_id or secrets.token_hex(6)
        token = cls.request_id.set(value)
        try:
            yield value
        finally:
            cls.request_id.reset(token)

    @classmethod
    def configure(cls, level: int | str = logging.INFO, fmt: str = _DEFAULT_FORMAT) -> None:
        """Install a stream handler on the package logger (applications only)."""
        root = logging.getLogger("study_chat_client")
        root.setLevel(level)
        if not any(getattr(h, "_study_chat_handler", False) for h in root.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt))
            handler.addFilter(cls._filter)
            handler._study_chat_handler = True  # type: ignore[attr-defined]
            root.addHandler(handler)


__all__ = ["SessionLogger"]
