"""Lightweight call-duration instrumentation.

Functions decorated with :func:`timed` report their wall-clock duration to the
``study_chat_client.timing`` logger while timing is enabled. Disabled timing
costs one attribute check per call.
"""

from __future__ import annotations

import functools
import inspect
import logging
from time import perf_counter
from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

_TIMING_LOGGER = logging.getLogger("study_chat_client.timing")


class _TimingState:
    enabled: bool = False


def configure_timing(enabled: bool) -> None:
    _TimingState.enabled = bool(enabled)


def timing_mark(label: str, **fields: Any) -> None:
    """Record a point-in-time marker on the timing logger."""
    if not _TimingState.enabled:
        return
    extras = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
    _TIMING_LOGGER.debug("mark %s %s", label, extras)


def _report(qualname: str, started: float) -> None:
    _TIMING_LOGGER.debug("%s took %.2fms", qualname, (perf_counter() - started) * 1000)


def timed(func: F) -> F:
    """Report the duration of ``func`` (sync or async) when timing is enabled."""
    qualname = getattr(func, "__qualname__", repr(func))

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _TimingState.enabled:
                return await func(*args, **kwargs)
            started = perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _report(qualname, started)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        if not _TimingState.enabled:
            return func(*args, **kwargs)
        started = perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            _report(qualname, started)

    return wrapper  # type: ignore[return-value]


__all__ = ["timed", "timing_mark", "configure_timing"]
