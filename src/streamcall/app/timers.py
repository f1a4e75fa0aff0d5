"""Timer seam for the single-threaded scheduling model.

All suspension points in streamcall are timer delays: stagger delays, retry
backoff, streaming-marker clears and the fallback scan. Components receive a
Timers object instead of touching the event loop directly.

// [LAW:locality-or-seam] Production uses the asyncio loop; tests drive a manual clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callable[[], object], *, first: float | None = None) -> TimerHandle: ...

    def now(self) -> float: ...


class _RepeatingHandle:
    def __init__(self) -> None:
        self.cancelled = False
        self.current: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        self.cancelled = True
        if self.current is not None:
            self.current.cancel()
            self.current = None


class AsyncioTimers:
    """Timers backed by an asyncio event loop (the Textual loop in the TUI)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], object]) -> asyncio.TimerHandle:
        return self._loop.call_later(max(0.0, delay), _guarded, callback)

    def call_every(
        self, interval: float, callback: Callable[[], object], *, first: float | None = None
    ) -> _RepeatingHandle:
        handle = _RepeatingHandle()

        def _tick() -> None:
            if handle.cancelled:
                return
            _guarded(callback)
            if not handle.cancelled:
                handle.current = self._loop.call_later(interval, _tick)

        handle.current = self._loop.call_later(interval if first is None else first, _tick)
        return handle


def _guarded(callback: Callable[[], object]) -> None:
    """Timer callbacks must never take the loop down."""
    try:
        callback()
    except Exception:
        logger.exception("timer callback %r failed", callback)
