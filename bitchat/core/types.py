"""
BitChat shared error types.

ErrorContext is a plain dataclass: it lives on a live error object and may be
enriched in place. Everything that crosses a storage or export boundary is a
pydantic model with camelCase aliases, so dumps look like:

    {"name": "NetworkError", "code": 2001, "userMessage": "...", ...}

Models accept both snake_case and camelCase keys on load.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from bitchat.core.codes import ErrorCategory, ErrorCode, ErrorSeverity

MAX_STACK_FRAMES = 10

_timestamp_lock = threading.Lock()
_last_timestamp = 0


def next_timestamp() -> int:
    """Wall-clock milliseconds, never smaller than a previously issued value."""
    global _last_timestamp
    now = int(time.time() * 1000)
    with _timestamp_lock:
        if now < _last_timestamp:
            now = _last_timestamp
        _last_timestamp = now
    return now


def as_data(value: Any) -> dict[str, Any]:
    """Context payload as a dict. A non-mapping payload is stored under ``"value"``."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {"value": value}


def safe_serialize(data: Any) -> dict[str, Any]:
    """Replace values that json can't encode with their str()."""
    result = {}
    for key, value in as_data(data).items():
        try:
            json.dumps(value)
            result[str(key)] = value
        except (TypeError, ValueError):
            result[str(key)] = str(value)
    return result


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Error Context
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_CONTEXT_ALIASES = {
    "userAgent": "user_agent",
    "sessionId": "session_id",
    "stackFrames": "stack_frames",
}


@dataclass
class ErrorContext:
    """Where and when a failure happened."""

    component: str | None = None
    operation: str | None = None
    data: dict[str, Any] | None = None
    user_agent: str | None = None
    timestamp: int = field(default_factory=next_timestamp)
    session_id: str | None = None
    stack_frames: list[str] | None = None

    @classmethod
    def coerce(cls, value: ErrorContext | dict[str, Any] | None) -> ErrorContext:
        """
        Build a context from None, a partial mapping, or an existing context.

        Unknown mapping keys are folded into ``data`` rather than rejected,
        and a non-mapping ``data`` becomes ``{"value": data}``.
        An existing context is returned as-is.
        """
        if isinstance(value, ErrorContext):
            return value
        if not value:
            return cls()

        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, item in value.items():
            name = _CONTEXT_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = item
            else:
                extra[key] = item

        if kwargs.get("data") is not None:
            kwargs["data"] = as_data(kwargs["data"])
        if extra:
            kwargs["data"] = {**as_data(kwargs.get("data")), **extra}
        if kwargs.get("timestamp") is None:
            kwargs.pop("timestamp", None)
        if kwargs.get("stack_frames"):
            kwargs["stack_frames"] = list(kwargs["stack_frames"])[:MAX_STACK_FRAMES]
        return cls(**kwargs)

    def fill_missing(self, **values: Any) -> None:
        """Set fields that are currently empty. Never overwrites."""
        for key, value in values.items():
            if value is not None and getattr(self, key, None) is None:
                setattr(self, key, value)

    def to_serialized(self) -> SerializedContext:
        return SerializedContext(
            component=self.component,
            operation=self.operation,
            data=safe_serialize(self.data) if self.data else None,
            user_agent=self.user_agent,
            timestamp=self.timestamp,
            session_id=self.session_id,
            stack_frames=list(self.stack_frames) if self.stack_frames else None,
        )


def merge_context(
    base: ErrorContext | dict[str, Any] | None, **fields_: Any
) -> dict[str, Any]:
    """Return a new partial-context mapping with ``fields_`` layered on top."""
    if isinstance(base, ErrorContext):
        merged = {
            f.name: getattr(base, f.name)
            for f in fields(ErrorContext)
            if getattr(base, f.name) is not None
        }
    else:
        merged = dict(base or {})
    merged.update({k: v for k, v in fields_.items() if v is not None})
    return merged


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Wire Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class WireModel(BaseModel):
    """Base for exported records: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SerializedContext(WireModel):
    """JSON-safe projection of an ErrorContext."""

    component: str | None = None
    operation: str | None = None
    data: dict[str, Any] | None = None
    user_agent: str | None = None
    timestamp: int = 0
    session_id: str | None = None
    stack_frames: list[str] | None = None


class SerializedError(WireModel):
    """JSON-safe projection of a BitChatError, causes included."""

    name: str = "BitChatError"
    message: str
    code: ErrorCode = ErrorCode.UNKNOWN
    category: ErrorCategory = ErrorCategory.GENERIC
    severity: ErrorSeverity = ErrorSeverity.ERROR
    context: SerializedContext = Field(default_factory=SerializedContext)
    cause: SerializedError | None = None
    recoverable: bool = False
    user_message: str = ""

    @field_validator("code", mode="before")
    @classmethod
    def _known_code(cls, value: Any) -> ErrorCode:
        try:
            return ErrorCode(int(value))
        except (TypeError, ValueError):
            return ErrorCode.UNKNOWN

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, value: Any) -> ErrorCategory:
        try:
            return ErrorCategory(value)
        except ValueError:
            return ErrorCategory.GENERIC

    @field_validator("severity", mode="before")
    @classmethod
    def _known_severity(cls, value: Any) -> ErrorSeverity:
        try:
            return ErrorSeverity(value)
        except ValueError:
            return ErrorSeverity.ERROR


class LogEntry(WireModel):
    """One dispatcher log record. ``handled`` flips once routing completes."""

    id: str
    error: SerializedError
    timestamp: int
    handled: bool = False


class ErrorStats(WireModel):
    """Snapshot of the dispatcher log."""

    total_errors: int = 0
    by_category: dict[ErrorCategory, int] = Field(
        default_factory=lambda: {c: 0 for c in ErrorCategory}
    )
    by_severity: dict[ErrorSeverity, int] = Field(
        default_factory=lambda: {s: 0 for s in ErrorSeverity}
    )
    last_error: LogEntry | None = None
    recent_errors: list[LogEntry] = Field(default_factory=list)


class ErrorLogExport(WireModel):
    """The document produced by ErrorHandler.export_log()."""

    session_id: str
    exported_at: str
    stats: ErrorStats
    errors: list[LogEntry] = Field(default_factory=list)


SerializedError.model_rebuild()
