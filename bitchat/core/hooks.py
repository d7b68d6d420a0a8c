"""
Host uncaught-failure hooks.

Python has three places where a failure can escape every ``try``:

    sys.excepthook          uncaught exception in the main thread
    threading.excepthook    uncaught exception in any other thread
    loop exception handler  exceptions asyncio could not deliver
                            (task exception never retrieved, callback errors)

The first two are "uncaught error" events, the last is the
"unhandled rejection" event. HostHooks swaps each of them for a function
that forwards the failure, and puts the previous hook back on detach.
Interrupts (KeyboardInterrupt, SystemExit) are always passed through to
the previous hook.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
import traceback
from types import TracebackType
from typing import Any, Callable

logger = logging.getLogger(__name__)

FailureSink = Callable[[object, dict[str, Any]], Any]

_PASSTHROUGH = (KeyboardInterrupt, SystemExit)


def _location(tb: TracebackType | None) -> dict[str, Any]:
    """Filename/line of the innermost frame, if there is one."""
    if tb is None:
        return {}
    frames = traceback.extract_tb(tb)
    if not frames:
        return {}
    return {"filename": frames[-1].filename, "lineno": frames[-1].lineno}


class HostHooks:
    """Installs and removes the process-level failure hooks."""

    def __init__(self, sink: FailureSink) -> None:
        self._sink = sink
        self._global_attached = False
        self._prev_excepthook: Callable[..., Any] | None = None
        self._prev_thread_hook: Callable[..., Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._prev_loop_handler: Callable[..., Any] | None = None

    @property
    def global_attached(self) -> bool:
        return self._global_attached

    @property
    def rejections_attached(self) -> bool:
        return self._loop is not None

    # ━━━ Uncaught errors ━━━

    def attach_global(self) -> bool:
        """Hook sys/threading. Returns False if already hooked."""
        if self._global_attached:
            return False
        self._prev_excepthook = sys.excepthook
        self._prev_thread_hook = threading.excepthook
        sys.excepthook = self._excepthook
        threading.excepthook = self._thread_excepthook
        self._global_attached = True
        logger.debug("Uncaught error hooks attached")
        return True

    def detach_global(self) -> None:
        if not self._global_attached:
            return
        # Someone may have layered their own hook on top of ours; leave theirs alone
        if sys.excepthook == self._excepthook:
            sys.excepthook = self._prev_excepthook or sys.__excepthook__
        if threading.excepthook == self._thread_excepthook:
            threading.excepthook = self._prev_thread_hook or threading.__excepthook__
        self._prev_excepthook = None
        self._prev_thread_hook = None
        self._global_attached = False

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, _PASSTHROUGH):
            (self._prev_excepthook or sys.__excepthook__)(exc_type, exc, tb)
            return
        self._sink(
            exc,
            {
                "component": "global",
                "operation": "uncaught error",
                "data": _location(tb),
            },
        )

    def _thread_excepthook(self, args: Any) -> None:
        if args.exc_type is not None and issubclass(args.exc_type, _PASSTHROUGH):
            (self._prev_thread_hook or threading.__excepthook__)(args)
            return
        reason = args.exc_value if args.exc_value is not None else args.exc_type.__name__
        data = _location(args.exc_traceback)
        if args.thread is not None:
            data["thread"] = args.thread.name
        self._sink(
            reason,
            {"component": "global", "operation": "uncaught error", "data": data},
        )

    # ━━━ Unhandled rejections ━━━

    def attach_rejections(self, loop: asyncio.AbstractEventLoop) -> bool:
        """Take over ``loop``'s exception handler. Returns False if already hooked."""
        if self._loop is not None:
            return False
        self._prev_loop_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._loop_exception_handler)
        self._loop = loop
        logger.debug("Loop exception handler attached")
        return True

    def detach_rejections(self) -> None:
        if self._loop is None:
            return
        loop, self._loop = self._loop, None
        if not loop.is_closed() and loop.get_exception_handler() == self._loop_exception_handler:
            loop.set_exception_handler(self._prev_loop_handler)
        self._prev_loop_handler = None

    def _loop_exception_handler(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        message = context.get("message") or "Unhandled exception in event loop"
        if isinstance(exc, _PASSTHROUGH):
            if self._prev_loop_handler is not None:
                self._prev_loop_handler(loop, context)
            else:
                loop.default_exception_handler(context)
            return
        data: dict[str, Any] = {"message": message}
        if exc is not None:
            data.update(_location(exc.__traceback__))
        self._sink(
            exc if exc is not None else message,
            {"component": "global", "operation": "unhandled rejection", "data": data},
        )

    def detach_all(self) -> None:
        self.detach_global()
        self.detach_rejections()
