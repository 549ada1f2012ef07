"""Callback dispatch and single-shot debounce timers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


def dispatch(
    callback: Callable[..., Any],
    *args: Any,
    tasks: set[asyncio.Task[Any]] | None = None,
    label: str = "callback",
) -> asyncio.Task[Any] | None:
    """Invoke a sync or async callback without blocking the caller.

    Coroutine results are scheduled as tasks; the task is added to ``tasks``
    until it completes. Failures are logged, never raised.
    """
    try:
        result = callback(*args)
    except Exception:
        logger.exception(f"Error in {label}")
        return None

    if not inspect.isawaitable(result):
        return None

    task = asyncio.ensure_future(result)
    if tasks is not None:
        tasks.add(task)

    def _done(finished: asyncio.Future[Any]) -> None:
        if tasks is not None:
            tasks.discard(finished)  # type: ignore[arg-type]
        if finished.cancelled():
            return
        exc = finished.exception()
        if exc is not None:
            logger.error(f"Error in {label}: {exc}", exc_info=exc)

    task.add_done_callback(_done)
    return task


class DebounceTimer:
    """Single-shot timer that is re-armed on every trigger.

    arm() (re)starts the countdown; when it expires the callback runs once.
    A delay of 0 runs the callback synchronously inside arm().
    """

    def __init__(self, delay_ms: int, callback: Callable[[], None]):
        self.delay_ms = delay_ms
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        if self.delay_ms <= 0:
            self._callback()
            return

        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_ms / 1000, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()
