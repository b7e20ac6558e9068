"""Small async helpers shared across subsystems."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from typing import Any


async def _await_if_needed(value: Any) -> Any:
    """Await ``value`` when it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def _consume_background_task_exception(task: asyncio.Task) -> None:
    """Retrieve a finished task's exception so asyncio never reports it as unretrieved."""
    with contextlib.suppress(asyncio.CancelledError, Exception):
        task.exception()


__all__ = ["_await_if_needed", "_consume_background_task_exception"]
