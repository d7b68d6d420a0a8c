"""
Circuit breaker for protecting callers from a failing dependency.

States:
    closed     calls pass through, failures are counted in a sliding window
    open       calls fail immediately with CircuitOpenError
    half-open  trial calls; enough successes close, one failure reopens

The open -> half-open move is lazy: it happens when the state is next
looked at, once ``recovery_timeout_ms`` has passed since opening.

Usage:
    breaker = CircuitBreaker(failure_threshold=3)
    try:
        events = await breaker.execute(lambda: relay.fetch(filters))
    except CircuitOpenError:
        events = cached_events()
"""

from __future__ import annotations

import inspect
import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from bitchat.core.config import CircuitBreakerConfig, merge_config

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitStats:
    """Point-in-time snapshot of a breaker. Times are epoch milliseconds."""

    state: CircuitState
    failures: int
    successes: int
    last_failure: int | None
    last_success: int | None
    total_calls: int
    total_failures: int
    total_successes: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitOpenError(Exception):
    """Raised instead of calling the protected function while the circuit is open."""

    def __init__(self, message: str, stats: CircuitStats) -> None:
        super().__init__(message)
        self.stats = stats


class CircuitBreaker:
    """
    Thread-safe circuit breaker.

    Args:
        config: Base CircuitBreakerConfig (defaults if omitted)
        clock: Returns the current time in seconds; inject for tests
        **overrides: CircuitBreakerConfig fields
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        **overrides: Any,
    ) -> None:
        self.config = merge_config(config or CircuitBreakerConfig(), overrides)
        self._clock = clock
        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._failures: list[int] = []
        self._half_open_successes = 0
        self._last_state_change = self._now()
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._last_failure: int | None = None
        self._last_success: int | None = None

    def _now(self) -> int:
        return int(self._clock() * 1000)

    # ━━━ Calling ━━━

    async def execute(self, fn: Callable[[], Awaitable[T] | T]) -> T:
        """Run ``fn`` through the breaker. Raises CircuitOpenError while open."""
        self._admit()
        try:
            result = fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Synchronous counterpart of execute()."""
        self._admit()
        try:
            result = fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def _admit(self) -> None:
        with self._lock:
            self._total_calls += 1
            self._update_state()
            if self._state is CircuitState.OPEN:
                raise CircuitOpenError("Circuit breaker is open", self._snapshot())

    # ━━━ State ━━━

    def get_state(self) -> CircuitState:
        with self._lock:
            self._update_state()
            return self._state

    def get_stats(self) -> CircuitStats:
        with self._lock:
            return self._snapshot()

    def reset(self) -> None:
        """Force closed and forget the failure window."""
        with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._failures = []
            self._half_open_successes = 0

    def force_open(self) -> None:
        with self._lock:
            self._set_state(CircuitState.OPEN)

    def record_success(self) -> None:
        with self._lock:
            self._total_successes += 1
            self._last_success = self._now()

            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
                    self._failures = []
                    self._half_open_successes = 0

    def record_failure(self) -> None:
        with self._lock:
            now = self._now()
            self._total_failures += 1
            self._last_failure = now

            if self._state is CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
                self._half_open_successes = 0
                return

            self._failures.append(now)
            if len(self._recent_failures()) >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

    def _update_state(self) -> None:
        if self._state is CircuitState.OPEN:
            elapsed = self._now() - self._last_state_change
            if elapsed >= self.config.recovery_timeout_ms:
                self._set_state(CircuitState.HALF_OPEN)
                self._half_open_successes = 0

    def _set_state(self, state: CircuitState) -> None:
        if self._state is state:
            return
        previous, self._state = self._state, state
        self._last_state_change = self._now()
        logger.info(f"Circuit {previous.value} -> {state.value}")
        if self.config.on_state_change is not None:
            try:
                self.config.on_state_change(state, self._snapshot())
            except Exception as e:
                logger.error(f"on_state_change callback failed: {e}", exc_info=e)

    def _recent_failures(self) -> list[int]:
        cutoff = self._now() - self.config.window_ms
        self._failures = [ts for ts in self._failures if ts > cutoff]
        return self._failures

    def _snapshot(self) -> CircuitStats:
        return CircuitStats(
            state=self._state,
            failures=len(self._recent_failures()),
            successes=self._half_open_successes,
            last_failure=self._last_failure,
            last_success=self._last_success,
            total_calls=self._total_calls,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
        )


class ProtectedCall:
    """A function bound to its own CircuitBreaker."""

    def __init__(self, fn: Callable[..., Awaitable[T]], breaker: CircuitBreaker) -> None:
        self._fn = fn
        self.breaker = breaker

    async def execute(self, *args: Any, **kwargs: Any) -> Any:
        return await self.breaker.execute(lambda: self._fn(*args, **kwargs))

    __call__ = execute

    def get_stats(self) -> CircuitStats:
        return self.breaker.get_stats()

    def reset(self) -> None:
        self.breaker.reset()


def with_circuit_breaker(
    fn: Callable[..., Awaitable[Any]],
    config: CircuitBreakerConfig | None = None,
    **overrides: Any,
) -> ProtectedCall:
    """Wrap ``fn`` with a fresh breaker."""
    return ProtectedCall(fn, CircuitBreaker(config, **overrides))
