"""
Fallback chains: primary -> secondary -> final.

When the wrapped call fails, each configured tier is tried in turn. A tier
is a plain value or a zero-argument callable (sync or async). The final
tier is always a plain value. If every tier fails or none is configured,
the original error from the wrapped call is raised, not a fallback's.

Usage:
    contacts = await with_fallback(
        load_contacts_from_opfs,
        primary=load_contacts_from_indexeddb,
        final=[],
    )
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


# Marks an unconfigured tier; None is a valid fallback value
MISSING: Any = _Missing()

PRIMARY, SECONDARY, FINAL = 1, 2, 3


@dataclass
class FallbackConfig:
    primary: Any = MISSING
    secondary: Any = MISSING
    final: Any = MISSING
    on_fallback: Callable[[BaseException, int], Any] | None = None


async def _resolve(tier: Any) -> Any:
    value = tier() if callable(tier) else tier
    if inspect.isawaitable(value):
        value = await value
    return value


def _notify(config: FallbackConfig, error: BaseException, level: int) -> None:
    if config.on_fallback is None:
        return
    try:
        config.on_fallback(error, level)
    except Exception as e:
        logger.error(f"on_fallback callback failed: {e}", exc_info=e)


async def with_fallback(
    fn: Callable[[], Awaitable[Any] | Any],
    config: FallbackConfig | None = None,
    **fields: Any,
) -> Any:
    """
    Run ``fn``; on failure walk the fallback tiers.

    ``on_fallback(error, level)`` is called before each tier is used, with
    the most recent failure (level 1 primary, 2 secondary, 3 final).
    """
    cfg = replace(config or FallbackConfig(), **fields)

    try:
        result = fn()
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception as original:
        latest: BaseException = original
        for level, tier in ((PRIMARY, cfg.primary), (SECONDARY, cfg.secondary)):
            if tier is MISSING:
                continue
            _notify(cfg, latest, level)
            try:
                return await _resolve(tier)
            except Exception as e:
                logger.debug(f"Fallback level {level} failed: {e}")
                latest = e

        if cfg.final is not MISSING:
            _notify(cfg, latest, FINAL)
            return cfg.final

        raise original


def create_with_fallback(
    fn: Callable[..., Awaitable[Any]],
    config: FallbackConfig | None = None,
    **fields: Any,
) -> Callable[..., Awaitable[Any]]:
    """Bind ``fn`` to a fallback chain; arguments are passed through."""
    cfg = replace(config or FallbackConfig(), **fields)

    @wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        return await with_fallback(lambda: fn(*args, **kwargs), cfg)

    return wrapper
