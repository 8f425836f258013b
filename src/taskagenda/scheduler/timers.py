"""
scheduler/timers.py — single-shot timer backends

The Scheduler never sleeps itself. It asks a timer factory for one
single-shot callback and keeps the returned handle so it can cancel it.

    factory(delay_s, callback) -> handle      # handle.cancel()

Backends
--------
thread   One daemon threading.Timer per arm. Works from plain synchronous
         code; callbacks run on the timer thread.
asyncio  loop.call_later() on an explicit loop, or on the loop running in
         the calling thread at arm time. Callbacks run on the loop.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional, Protocol

from taskagenda.exceptions import TimerBackendError

TimerCallback = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, TimerCallback], TimerHandle]


class ThreadTimerFactory:
    """Arms daemon threading.Timer objects."""

    name = "thread"

    def __call__(self, delay_s: float, callback: TimerCallback) -> threading.Timer:
        timer = threading.Timer(max(delay_s, 0.0), callback)
        timer.daemon = True
        timer.name = "taskagenda-timer"
        timer.start()
        return timer


class AsyncioTimerFactory:
    """Arms loop.call_later() callbacks."""

    name = "asyncio"

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError as exc:
            raise TimerBackendError(
                "The asyncio timer backend needs a running event loop in the "
                "calling thread, or an explicit loop passed to AsyncioTimerFactory."
            ) from exc

    def __call__(self, delay_s: float, callback: TimerCallback) -> asyncio.TimerHandle:
        loop = self._resolve_loop()
        if self._loop is not None and _loop_thread_differs(loop):
            # call_later is not thread-safe; hop onto the loop first.
            handle = _DeferredAsyncioHandle()
            loop.call_soon_threadsafe(handle.arm, loop, max(delay_s, 0.0), callback)
            return handle
        return loop.call_later(max(delay_s, 0.0), callback)


class _DeferredAsyncioHandle:
    """Handle for a timer armed from outside the loop's thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    def arm(self, loop: asyncio.AbstractEventLoop, delay_s: float, callback: TimerCallback) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._handle = loop.call_later(delay_s, callback)

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._handle is not None:
                self._handle.cancel()


def _loop_thread_differs(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is not loop
    except RuntimeError:
        return True


def build_timer_factory(
    backend: str,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> TimerFactory:
    """Map the scheduler.timer_backend setting to a factory."""
    backend = backend.strip().lower()
    if backend == "thread":
        return ThreadTimerFactory()
    if backend == "asyncio":
        return AsyncioTimerFactory(loop)
    raise TimerBackendError(
        f"Unknown timer backend '{backend}'. Supported: ['asyncio', 'thread']"
    )
