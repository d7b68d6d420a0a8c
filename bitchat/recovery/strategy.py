"""
Pick and apply a recovery strategy for a failure.

    strategy = get_recovery_strategy(error)
    value = await apply_recovery(load, strategy=strategy, fallback_value=[])
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable

from bitchat.core.codes import ErrorCategory
from bitchat.core.config import RetryConfig
from bitchat.core.errors import BitChatError, get_error_code, is_recoverable_error
from bitchat.recovery.circuit import CircuitBreaker
from bitchat.recovery.fallback import MISSING, with_fallback
from bitchat.recovery.retry import SleepFunc, retry
from bitchat.recovery.transient import TRANSIENT_ERROR_CODES


class RecoveryStrategy(str, Enum):
    RETRY = "retry"
    FALLBACK = "fallback"
    CIRCUIT_BREAKER = "circuit-breaker"
    IGNORE = "ignore"


def get_recovery_strategy(error: object) -> RecoveryStrategy:
    """Recommended strategy: non-recoverable -> ignore, storage -> fallback, else retry."""
    if not is_recoverable_error(error):
        return RecoveryStrategy.IGNORE
    if get_error_code(error) in TRANSIENT_ERROR_CODES:
        return RecoveryStrategy.RETRY
    if isinstance(error, BitChatError) and error.category == ErrorCategory.STORAGE:
        return RecoveryStrategy.FALLBACK
    return RecoveryStrategy.RETRY


async def _call(fn: Callable[[], Awaitable[Any] | Any]) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


async def apply_recovery(
    fn: Callable[[], Awaitable[Any] | Any],
    *,
    strategy: RecoveryStrategy | str = RecoveryStrategy.RETRY,
    retry_config: RetryConfig | None = None,
    fallback_value: Any = MISSING,
    breaker: CircuitBreaker | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> Any:
    """
    Run ``fn`` under ``strategy``.

    Args:
        fn: Zero-argument callable, sync or async
        strategy: How to recover from a failure
        retry_config: Used by the retry strategy
        fallback_value: Returned when retry gives up, or used as the fallback tier
        breaker: Shared breaker for the circuit-breaker strategy (a fresh one otherwise)
        sleep: Passed through to retry()
    """
    strategy = RecoveryStrategy(strategy)

    if strategy is RecoveryStrategy.RETRY:
        result = await retry(fn, retry_config, sleep=sleep)
        if result.success:
            return result.value
        if fallback_value is not MISSING:
            return fallback_value
        raise result.error  # type: ignore[misc]

    if strategy is RecoveryStrategy.FALLBACK:
        if fallback_value is MISSING:
            return await _call(fn)
        return await with_fallback(fn, primary=fallback_value)

    if strategy is RecoveryStrategy.CIRCUIT_BREAKER:
        return await (breaker or CircuitBreaker()).execute(fn)

    return await _call(fn)
