"""
Retry with exponential backoff and jitter.

Usage:
    result = await retry(lambda: relay.publish(event), max_attempts=5)
    if not result.success:
        handle_error(result.error)

    @with_retry(initial_delay_ms=500)
    async def fetch_profile(pubkey: str) -> Profile: ...

Whether a failure is worth another attempt is decided in this order:
1. ``is_retryable(error, attempt)`` if configured (its answer is final)
2. Recoverable BitChatErrors whose code is in ``retryable_codes``
3. Recoverable BitChatErrors whose category is in ``retryable_categories``
4. Any exception whose message mentions a network/timeout/connection problem
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Generic, TypeVar

from bitchat.core.config import RetryConfig, merge_config
from bitchat.core.errors import BitChatError, is_recoverable_error
from bitchat.recovery.transient import TRANSIENT_CATEGORIES, TRANSIENT_ERROR_CODES

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]

_TRANSIENT_MARKERS = (
    "network",
    "timeout",
    "connection",
    "econnrefused",
    "econnreset",
    "etimedout",
)


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retry loop. ``error`` is the last failure when unsuccessful."""

    success: bool
    attempts: int
    total_delay_ms: int = 0
    value: T | None = None
    error: BaseException | None = None


def compute_delay(config: RetryConfig, attempt: int) -> int:
    """Backoff for the wait after failed ``attempt`` (1-based), jitter applied."""
    base = min(
        config.initial_delay_ms * config.backoff_multiplier ** (attempt - 1),
        config.max_delay_ms,
    )
    jitter = base * config.jitter_factor * random.uniform(-1, 1)
    return max(0, math.floor(base + jitter + 0.5))


def is_retryable(error: BaseException, attempt: int, config: RetryConfig) -> bool:
    if config.is_retryable is not None:
        try:
            return bool(config.is_retryable(error, attempt))
        except Exception as e:
            logger.error(f"is_retryable predicate failed: {e}", exc_info=e)
            return False

    if is_recoverable_error(error):
        codes = config.retryable_codes
        if error.code in (TRANSIENT_ERROR_CODES if codes is None else codes):
            return True
        categories = config.retryable_categories
        if error.category in (TRANSIENT_CATEGORIES if categories is None else categories):
            return True

    message = error.message if isinstance(error, BitChatError) else str(error)
    message = message.lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def retry(
    fn: Callable[[], Awaitable[T] | T],
    config: RetryConfig | None = None,
    *,
    sleep: SleepFunc = asyncio.sleep,
    **overrides: Any,
) -> RetryResult[T]:
    """
    Call ``fn`` until it succeeds, attempts run out, or a failure is not retryable.

    Args:
        fn: Zero-argument callable, sync or async
        config: Base RetryConfig (defaults if omitted)
        sleep: Awaitable sleep taking seconds; inject for tests
        **overrides: RetryConfig fields, e.g. ``max_attempts=5``

    Returns:
        RetryResult with the value or the last error, never raises for ``fn``
    """
    cfg = merge_config(config or RetryConfig(), overrides)

    attempt = 0
    total_delay_ms = 0
    last_error: BaseException | None = None

    while attempt < cfg.max_attempts:
        try:
            value = fn()
            if inspect.isawaitable(value):
                value = await value
            return RetryResult(
                success=True,
                value=value,
                attempts=attempt + 1,
                total_delay_ms=total_delay_ms,
            )
        except Exception as e:
            last_error = e
            attempt += 1

            if attempt >= cfg.max_attempts or not is_retryable(e, attempt, cfg):
                break

            delay_ms = compute_delay(cfg, attempt)
            logger.debug(f"Attempt {attempt}/{cfg.max_attempts} failed ({e}); retrying in {delay_ms}ms")
            if cfg.on_retry is not None:
                try:
                    cfg.on_retry(e, attempt, delay_ms)
                except Exception as callback_error:
                    logger.error(f"on_retry callback failed: {callback_error}", exc_info=callback_error)

            await sleep(delay_ms / 1000)
            total_delay_ms += delay_ms

    return RetryResult(
        success=False,
        error=last_error,
        attempts=attempt,
        total_delay_ms=total_delay_ms,
    )


def with_retry(
    fn: Callable[..., Awaitable[T]] | None = None,
    *,
    config: RetryConfig | None = None,
    sleep: SleepFunc = asyncio.sleep,
    **overrides: Any,
) -> Any:
    """
    Decorator form of retry(). Returns the value or raises the last error.

    Works bare (``@with_retry``) or with arguments (``@with_retry(max_attempts=5)``).
    """
    cfg = merge_config(config or RetryConfig(), overrides)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            result = await retry(lambda: func(*args, **kwargs), cfg, sleep=sleep)
            if result.success:
                return result.value  # type: ignore[return-value]
            raise result.error  # type: ignore[misc]

        return wrapper

    if fn is not None:
        return decorator(fn)
    return decorator
