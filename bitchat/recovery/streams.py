"""
Debounce and throttle for bursts of errors.

ErrorDebouncer batches: the first error of a burst arms one timer, and when
it fires every error collected since is delivered in a single call. The
timer is not pushed back by later errors, so a steady stream still flushes
every ``delay_ms``.

ErrorThrottler rate-limits: an error is delivered at once if ``limit_ms`` has
passed since the last delivery. Otherwise it takes the single pending slot
(replacing whatever was there) and one trailing delivery is scheduled for
the end of the window.

Timers run on the asyncio loop when called from async code, otherwise on a
daemon thread. Handler failures are logged.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

_EMPTY: Any = object()


class _TimerHandle(Protocol):
    def cancel(self) -> Any: ...


def _call_later(delay_ms: float, callback: Callable[[], None]) -> _TimerHandle:
    """Schedule on the running loop if there is one, else on a daemon thread."""
    delay = max(delay_ms, 0) / 1000
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer
    return loop.call_later(delay, callback)


class ErrorDebouncer:
    """Collects errors and hands them over in batches."""

    def __init__(self, handler: Callable[[list[Any]], Any], delay_ms: float = 1000) -> None:
        self.handler = handler
        self.delay_ms = delay_ms
        self._lock = threading.Lock()
        self._buffer: list[Any] = []
        self._timer: _TimerHandle | None = None

    def __call__(self, error: Any) -> None:
        with self._lock:
            self._buffer.append(error)
            if self._timer is None:
                self._timer = _call_later(self.delay_ms, self._fire)

    @property
    def pending(self) -> list[Any]:
        with self._lock:
            return list(self._buffer)

    def flush(self) -> None:
        """Deliver the current batch now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
        self._fire()

    def cancel(self) -> None:
        """Drop the current batch without delivering it."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._buffer = []

    def _fire(self) -> None:
        with self._lock:
            batch, self._buffer = self._buffer, []
            self._timer = None
        if not batch:
            return
        try:
            self.handler(batch)
        except Exception as e:
            logger.error(f"Error debouncer handler failed: {e}", exc_info=e)


class ErrorThrottler:
    """Delivers at most one error per window, keeping only the latest extra."""

    def __init__(
        self,
        handler: Callable[[Any], Any],
        limit_ms: float = 1000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.handler = handler
        self.limit_ms = limit_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._last_call: float | None = None
        self._pending: Any = _EMPTY
        self._timer: _TimerHandle | None = None

    def _now(self) -> float:
        return self._clock() * 1000

    def __call__(self, error: Any) -> None:
        with self._lock:
            now = self._now()
            elapsed = float("inf") if self._last_call is None else now - self._last_call
            if elapsed >= self.limit_ms:
                self._last_call = now
                deliver = True
            else:
                self._pending = error
                if self._timer is None:
                    self._timer = _call_later(self.limit_ms - elapsed, self._fire)
                deliver = False
        if deliver:
            self._deliver(error)

    @property
    def pending(self) -> Any | None:
        """The error waiting for the trailing call, if any."""
        with self._lock:
            return None if self._pending is _EMPTY else self._pending

    def flush(self) -> None:
        """Deliver the pending error now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
        self._fire()

    def cancel(self) -> None:
        """Drop the pending error."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = _EMPTY

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            error, self._pending = self._pending, _EMPTY
            if error is _EMPTY:
                return
            self._last_call = self._now()
        self._deliver(error)

    def _deliver(self, error: Any) -> None:
        try:
            self.handler(error)
        except Exception as e:
            logger.error(f"Error throttler handler failed: {e}", exc_info=e)


def create_error_debouncer(
    handler: Callable[[list[Any]], Any], delay_ms: float = 1000
) -> ErrorDebouncer:
    return ErrorDebouncer(handler, delay_ms)


def create_error_throttler(
    handler: Callable[[Any], Any], limit_ms: float = 1000
) -> ErrorThrottler:
    return ErrorThrottler(handler, limit_ms)
