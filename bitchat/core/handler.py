"""
BitChat Error Handler — normalises, logs and routes every failure.

Any raised value goes in, a BitChatError comes out:

    handler = ErrorHandler()
    handler.add_category_handler(ErrorCategory.NETWORK, show_offline_banner)
    unsubscribe = handler.add_listener(report)

    handler.handle_error(exc, context={"component": "relay-pool"})

Routing order for one failure:
1. Wrap into a BitChatError (session id filled in)
2. Append to the bounded in-memory log (newest first)
3. Console transport, selected by severity (unless silent)
4. The category handler, then the code handler (one each, last writer wins)
5. Every listener, in registration order

A handler or listener that raises is logged and skipped; it never stops
the ones after it, and ``handle_error`` itself never raises.

Handlers are explicit services. For code that has no way to receive one,
there is a process-wide default instance (``get_error_handler()``) that
tests drop with ``reset_error_handler()``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from functools import partial, wraps
from itertools import islice
from typing import Any, Awaitable, Callable, ClassVar, TypeVar

from bitchat.core.codes import ErrorCategory, ErrorCode, ErrorSeverity
from bitchat.core.config import BitChatConfig, HandlerConfig, merge_config
from bitchat.core.errors import BitChatError, ContextLike, coerce_error
from bitchat.core.hooks import HostHooks
from bitchat.core.log import setup_logging_from_config
from bitchat.core.types import ErrorLogExport, ErrorStats, LogEntry, merge_context

logger = logging.getLogger(__name__)

# Type aliases
ErrorCallback = Callable[[BitChatError], Any]
T = TypeVar("T")

_MISSING: Any = object()
_RECENT_IN_STATS = 5


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class ErrorHandler:
    """
    Process-local error dispatcher with a bounded log and running stats.

    Thread-safe: the log, listeners and handler maps are guarded by one
    re-entrant lock. Callbacks always run outside of it.
    """

    _instance: ClassVar[ErrorHandler | None] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, config: HandlerConfig | None = None, **overrides: Any) -> None:
        self.config = merge_config(config or HandlerConfig(), overrides)
        self._lock = threading.RLock()
        self._log: deque[LogEntry] = deque()
        self._listeners: dict[ErrorCallback, None] = {}
        self._category_handlers: dict[ErrorCategory, ErrorCallback] = {}
        self._code_handlers: dict[ErrorCode, ErrorCallback] = {}
        self._tasks: set[asyncio.Future] = set()
        self._session_id = f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        self._hooks = HostHooks(self._handle_host_failure)
        self._installed = False

    # ━━━ Default Instance ━━━

    @classmethod
    def get_instance(cls) -> ErrorHandler:
        """The process-wide default handler, created on first use."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def initialize(
        cls,
        config: HandlerConfig | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        **overrides: Any,
    ) -> ErrorHandler:
        """Create or reconfigure the default handler, then install its hooks."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls(config, **overrides)
                instance = cls._instance
            else:
                instance = cls._instance
                instance.configure(config, **overrides)
        instance.install(loop)
        return instance

    @classmethod
    def reset_for_testing(cls) -> None:
        """Uninstall and discard the default handler."""
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.uninstall()
            cls._instance = None

    # ━━━ Configuration & Lifecycle ━━━

    def configure(self, config: HandlerConfig | None = None, **overrides: Any) -> None:
        """Replace and/or patch the configuration. Shrinking the log trims it."""
        with self._lock:
            self.config = merge_config(config or self.config, overrides)
            self._trim()

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def session_id(self) -> str:
        return self._session_id

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """
        Hook host-level uncaught errors and unhandled rejections.

        Rejections are captured on ``loop``, or on the running loop when
        called from async code. Each hook is attached only if it is not
        attached yet, so calling again from inside a loop picks up the
        rejection hook that an earlier loop-less call had to skip.
        """
        with self._lock:
            first = not self._installed
            if self.config.capture_global_errors and not self._hooks.global_attached:
                self._hooks.attach_global()
            if self.config.capture_unhandled_rejections and not self._hooks.rejections_attached:
                target = loop or _running_loop()
                if target is not None:
                    self._hooks.attach_rejections(target)
                else:
                    logger.debug("No event loop; unhandled rejections not captured")
            self._installed = True
        if first:
            self._internal_log(logging.INFO, "Global error handlers installed")

    def uninstall(self) -> None:
        """Restore the previous host hooks. Safe to call when not installed."""
        with self._lock:
            if not self._installed:
                return
            self._hooks.detach_all()
            self._installed = False
        self._internal_log(logging.INFO, "Global error handlers uninstalled")

    # ━━━ Handling ━━━

    def handle_error(
        self,
        error: object,
        *,
        silent: bool = False,
        context: ContextLike = None,
    ) -> BitChatError:
        """
        Wrap, log and route a failure. Never raises.

        Args:
            error: Anything that was raised or rejected
            silent: Skip the console transport
            context: Partial context for errors that are not typed yet

        Returns:
            The BitChatError that was routed
        """
        typed = self._wrap(error, context)

        entry: LogEntry | None = None
        try:
            entry = self._append(typed)
        except Exception as e:
            logger.error(f"Error handler failed to record {typed!r}: {e}", exc_info=e)

        if self.config.log_to_console and not silent:
            try:
                self._log_to_console(typed)
            except Exception as e:
                logger.error(f"Error handler failed to log {typed!r}: {e}", exc_info=e)

        with self._lock:
            category_handler = self._category_handlers.get(typed.category)
            code_handler = self._code_handlers.get(typed.code)
            listeners = list(self._listeners)

        if category_handler is not None:
            self._invoke(category_handler, typed, "Category handler")
        if code_handler is not None:
            self._invoke(code_handler, typed, "Code handler")
        for listener in listeners:
            self._invoke(listener, typed, "Error listener")

        if entry is not None:
            entry.handled = True
        return typed

    def _wrap(self, error: object, context: ContextLike) -> BitChatError:
        if isinstance(error, BitChatError):
            error.context.fill_missing(session_id=self._session_id)
            return error
        merged = merge_context(context)
        merged.setdefault("session_id", self._session_id)
        return coerce_error(error, merged)

    def _append(self, error: BitChatError) -> LogEntry:
        entry = LogEntry(
            id=f"err_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            error=error.serialize(),
            timestamp=int(time.time() * 1000),
        )
        with self._lock:
            self._log.appendleft(entry)
            self._trim()
        return entry

    def _trim(self) -> None:
        while len(self._log) > self.config.max_log_size:
            self._log.pop()

    def _log_to_console(self, error: BitChatError) -> None:
        line = error.to_log_string()
        if error.severity == ErrorSeverity.INFO:
            logger.info(f"[BitChat] {line}")
        elif error.severity == ErrorSeverity.WARNING:
            logger.warning(f"[BitChat] {line}")
        elif error.severity == ErrorSeverity.CRITICAL:
            logger.error(f"[BitChat CRITICAL] {line}", exc_info=error)
        else:
            logger.error(f"[BitChat] {line}", exc_info=error)

    def _invoke(self, callback: ErrorCallback, error: BitChatError, label: str) -> None:
        """Call one handler/listener in isolation. Awaitables go on the running loop."""
        try:
            result = callback(error)
            if inspect.isawaitable(result):
                self._schedule(result, label)
        except Exception as e:
            self._internal_log(logging.ERROR, f"{label} threw error: {e}", exc_info=e)

    def _schedule(self, awaitable: Awaitable[Any], label: str) -> None:
        loop = _running_loop()
        if loop is None:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self._internal_log(
                logging.WARNING, f"{label} returned an awaitable but no event loop is running"
            )
            return
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_task_done, label))

    def _on_task_done(self, label: str, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._internal_log(logging.ERROR, f"{label} threw error: {exc}", exc_info=exc)

    def _handle_host_failure(self, reason: object, context: dict[str, Any]) -> None:
        self.handle_error(reason, context=context)

    def _internal_log(self, level: int, message: str, **kwargs: Any) -> None:
        if self.config.log_to_console:
            logger.log(level, f"[ErrorHandler] {message}", **kwargs)

    # ━━━ Listeners & Handlers ━━━

    def add_listener(self, listener: ErrorCallback) -> Callable[[], None]:
        """Subscribe to every handled error. Returns an unsubscribe function."""
        with self._lock:
            self._listeners[listener] = None
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: ErrorCallback) -> None:
        with self._lock:
            self._listeners.pop(listener, None)

    def add_category_handler(self, category: ErrorCategory, handler: ErrorCallback) -> None:
        """Set the handler for a category, replacing any previous one."""
        with self._lock:
            self._category_handlers[ErrorCategory(category)] = handler

    def remove_category_handler(self, category: ErrorCategory) -> None:
        with self._lock:
            self._category_handlers.pop(ErrorCategory(category), None)

    def add_code_handler(self, code: ErrorCode, handler: ErrorCallback) -> None:
        """Set the handler for a code, replacing any previous one."""
        with self._lock:
            self._code_handlers[ErrorCode(code)] = handler

    def remove_code_handler(self, code: ErrorCode) -> None:
        with self._lock:
            self._code_handlers.pop(ErrorCode(code), None)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # ━━━ Log Access ━━━

    def get_log(self) -> list[LogEntry]:
        """All entries, most recent first. The list is a copy."""
        with self._lock:
            return list(self._log)

    def get_recent_errors(self, count: int = 10) -> list[LogEntry]:
        with self._lock:
            return list(islice(self._log, max(count, 0)))

    def get_error_by_id(self, error_id: str) -> LogEntry | None:
        with self._lock:
            return next((entry for entry in self._log if entry.id == error_id), None)

    def clear_log(self) -> None:
        with self._lock:
            self._log.clear()

    def get_stats(self) -> ErrorStats:
        """Totals by category and severity, every key present."""
        with self._lock:
            entries = list(self._log)

        stats = ErrorStats(total_errors=len(entries))
        for entry in entries:
            stats.by_category[entry.error.category] += 1
            stats.by_severity[entry.error.severity] += 1
        stats.last_error = entries[0] if entries else None
        stats.recent_errors = entries[:_RECENT_IN_STATS]
        return stats

    def export_log(self) -> str:
        """JSON document with session id, export time, stats and the full log."""
        export = ErrorLogExport(
            session_id=self._session_id,
            exported_at=datetime.now(timezone.utc).isoformat(),
            stats=self.get_stats(),
            errors=self.get_log(),
        )
        return export.model_dump_json(by_alias=True, indent=2)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Convenience Functions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def get_error_handler() -> ErrorHandler:
    """The process-wide default handler."""
    return ErrorHandler.get_instance()


def init_error_handling(
    config: HandlerConfig | BitChatConfig | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
    **overrides: Any,
) -> ErrorHandler:
    """
    Configure and install the default handler.

    A full BitChatConfig (e.g. from ``BitChatConfig.load()``) also sets up
    logging from its ``logging`` section.
    """
    if isinstance(config, BitChatConfig):
        setup_logging_from_config(config.logging)
        config = config.handler
    return ErrorHandler.initialize(config, loop, **overrides)


def reset_error_handler() -> None:
    """Uninstall and drop the default handler (test isolation)."""
    ErrorHandler.reset_for_testing()


def handle_error(
    error: object, *, silent: bool = False, context: ContextLike = None
) -> BitChatError:
    """Route a failure through the default handler."""
    return get_error_handler().handle_error(error, silent=silent, context=context)


def create_safe_async(
    fn: Callable[..., Awaitable[T]],
    *,
    context: ContextLike = None,
    on_error: Callable[[BitChatError], Any] | None = None,
    fallback: Any = _MISSING,
    handler: ErrorHandler | None = None,
) -> Callable[..., Awaitable[T]]:
    """
    Wrap a coroutine function so failures are routed through an ErrorHandler.

    On failure ``on_error`` is called, then ``fallback`` is returned if one
    was given (``None`` counts), otherwise the typed error is raised.
    """

    @wraps(fn)
    async def safe(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:
            error = (handler or get_error_handler()).handle_error(exc, context=context)
            if on_error is not None:
                on_error(error)
            if fallback is not _MISSING:
                return fallback
            if error is exc:
                raise
            raise error from exc

    return safe


def create_safe(
    fn: Callable[..., T],
    *,
    context: ContextLike = None,
    on_error: Callable[[BitChatError], Any] | None = None,
    fallback: Any = _MISSING,
    handler: ErrorHandler | None = None,
) -> Callable[..., T]:
    """Synchronous counterpart of create_safe_async."""

    @wraps(fn)
    def safe(*args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            error = (handler or get_error_handler()).handle_error(exc, context=context)
            if on_error is not None:
                on_error(error)
            if fallback is not _MISSING:
                return fallback
            if error is exc:
                raise
            raise error from exc

    return safe
