"""
BitChat exception hierarchy.

Every failure in the system is (or gets wrapped into) a BitChatError.
Each domain has its own subclass with sensible defaults and named
factories for the common cases.

Usage:
    try:
        await relay.publish(event)
    except NetworkError as e:
        # Transient: retry or queue
    except BitChatError as e:
        show(e.user_message)

    raise StorageError.quota_exceeded({"component": "message-store"})

Two strings travel with every error: ``message`` is diagnostic,
``user_message`` is what a person may see. Internal detail never
reaches ``user_message`` unless a caller puts it there.

Constructing or wrapping an error never raises.
"""

from __future__ import annotations

import asyncio
import errno
import inspect
import platform
import traceback
from functools import singledispatch, wraps
from typing import Any, Callable, TypeVar

from bitchat.core.codes import (
    GENERIC_USER_MESSAGE,
    ErrorCategory,
    ErrorCode,
    ErrorSeverity,
    default_user_message,
)
from bitchat.core.types import (
    MAX_STACK_FRAMES,
    ErrorContext,
    SerializedContext,
    SerializedError,
    as_data,
    merge_context,
)

ContextLike = ErrorContext | dict[str, Any] | None
F = TypeVar("F", bound=Callable[..., Any])

_user_agent: str | None = None


def _host_user_agent() -> str:
    global _user_agent
    if _user_agent is None:
        _user_agent = (
            f"Python/{platform.python_version()} "
            f"({platform.system()} {platform.machine()})"
        )
    return _user_agent


def _as_enum(enum_type: Any, value: Any, default: Any, unknown: Any) -> Any:
    if value is None:
        return default
    try:
        return enum_type(value)
    except (TypeError, ValueError):
        return unknown


def _capture_frames(cause: BaseException | None) -> list[str]:
    """Innermost-first frame strings, from the cause's traceback or the current stack."""
    tb = getattr(cause, "__traceback__", None)
    if tb is not None:
        summary = list(traceback.extract_tb(tb))
    else:
        summary = [f for f in traceback.extract_stack() if f.filename != __file__]
    return [
        f"at {frame.name} ({frame.filename}:{frame.lineno})"
        for frame in reversed(summary)
    ][:MAX_STACK_FRAMES]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Base Error
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BitChatError(Exception):
    """
    Base exception for all BitChat failures.

    Subclasses only change the class-level defaults; every field can
    still be set explicitly at construction.
    """

    default_code: ErrorCode = ErrorCode.UNKNOWN
    default_category: ErrorCategory = ErrorCategory.GENERIC
    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    default_recoverable: bool = False

    _registry: dict[str, type[BitChatError]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        BitChatError._registry[cls.__name__] = cls

    def __init__(
        self,
        message: str = "",
        *,
        code: ErrorCode | None = None,
        category: ErrorCategory | None = None,
        severity: ErrorSeverity | None = None,
        context: ContextLike = None,
        cause: BaseException | None = None,
        recoverable: bool | None = None,
        user_message: str | None = None,
    ) -> None:
        try:
            message = str(message) if message else ""
        except Exception:
            message = ""
        self.message = message or "Unknown error"
        super().__init__(self.message)

        self.code = _as_enum(ErrorCode, code, self.default_code, ErrorCode.UNKNOWN)
        self.category = _as_enum(
            ErrorCategory, category, self.default_category, ErrorCategory.GENERIC
        )
        self.severity = _as_enum(
            ErrorSeverity, severity, self.default_severity, ErrorSeverity.ERROR
        )
        self.recoverable = (
            recoverable if recoverable is not None else self.default_recoverable
        )
        self.user_message = user_message or default_user_message(self.code)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

        try:
            self.context = ErrorContext.coerce(context)
        except Exception:
            self.context = ErrorContext()
        if self.context.user_agent is None:
            self.context.user_agent = _host_user_agent()
        if not self.context.stack_frames:
            try:
                self.context.stack_frames = _capture_frames(cause)
            except Exception:
                self.context.stack_frames = None

    @property
    def name(self) -> str:
        return type(self).__name__

    # ━━━ Serialization ━━━

    def serialize(self) -> SerializedError:
        """JSON-safe projection of this error and its cause chain."""
        return SerializedError(
            name=self.name,
            message=self.message,
            code=self.code,
            category=self.category,
            severity=self.severity,
            context=self.context.to_serialized(),
            cause=_serialize_cause(self.cause, self.context.timestamp),
            recoverable=self.recoverable,
            user_message=self.user_message,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.serialize().to_dict()

    @classmethod
    def deserialize(cls, data: SerializedError | dict[str, Any]) -> BitChatError:
        """
        Rebuild an error from its serialized form.

        The subclass is picked by ``name``; unknown names come back as
        BitChatError. Causes are restored recursively.
        """
        if not isinstance(data, SerializedError):
            data = SerializedError.model_validate(data)

        klass = BitChatError._registry.get(data.name, BitChatError)
        return klass(
            data.message,
            code=data.code,
            category=data.category,
            severity=data.severity,
            context=ErrorContext(**data.context.model_dump()),
            cause=cls.deserialize(data.cause) if data.cause else None,
            recoverable=data.recoverable,
            user_message=data.user_message or None,
        )

    # ━━━ Wrapping ━━━

    @classmethod
    def from_error(
        cls,
        error: BaseException,
        *,
        code: ErrorCode | None = None,
        category: ErrorCategory | None = None,
        severity: ErrorSeverity | None = None,
        context: ContextLike = None,
        recoverable: bool | None = None,
        user_message: str | None = None,
    ) -> BitChatError:
        """Wrap a foreign exception. BitChatErrors are returned unchanged."""
        if isinstance(error, BitChatError):
            return error
        try:
            message = str(error) or type(error).__name__
        except Exception:
            message = type(error).__name__
        return cls(
            message,
            code=code,
            category=category,
            severity=severity,
            context=context,
            cause=error,
            recoverable=recoverable,
            user_message=user_message,
        )

    def enrich_context(
        self, component: str | None = None, operation: str | None = None
    ) -> BitChatError:
        """Fill in component/operation if they are not set yet."""
        self.context.fill_missing(component=component, operation=operation)
        return self

    def to_log_string(self) -> str:
        """Single-line summary: ``[SEVERITY] [category/code] message in X during Y``."""
        parts = [
            f"[{self.severity.value.upper()}]",
            f"[{self.category.value}/{int(self.code)}]",
            self.message,
        ]
        if self.context.component:
            parts.append(f"in {self.context.component}")
        if self.context.operation:
            parts.append(f"during {self.context.operation}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"{self.name}(code={self.code.name}, message={self.message!r})"


def _serialize_cause(
    cause: BaseException | None, timestamp: int
) -> SerializedError | None:
    if cause is None:
        return None
    if isinstance(cause, BitChatError):
        return cause.serialize()
    try:
        message = str(cause) or type(cause).__name__
    except Exception:
        message = type(cause).__name__
    return SerializedError(
        name=type(cause).__name__,
        message=message,
        context=SerializedContext(timestamp=timestamp),
        cause=_serialize_cause(cause.__cause__, timestamp),
        user_message=default_user_message(ErrorCode.UNKNOWN),
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Domain Errors
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class NetworkError(BitChatError):
    """Connectivity, relay and peer-to-peer failures. Usually transient."""

    default_code = ErrorCode.NETWORK_OFFLINE
    default_category = ErrorCategory.NETWORK
    default_severity = ErrorSeverity.WARNING
    default_recoverable = True

    @classmethod
    def offline(cls, context: ContextLike = None) -> NetworkError:
        return cls(
            "Network is offline",
            code=ErrorCode.NETWORK_OFFLINE,
            context=context,
            recoverable=True,
            user_message="You appear to be offline. Messages will be sent when you reconnect.",
        )

    @classmethod
    def timeout(cls, operation: str, context: ContextLike = None) -> NetworkError:
        return cls(
            f"Operation timed out: {operation}",
            code=ErrorCode.NETWORK_TIMEOUT,
            context=merge_context(context, operation=operation),
            recoverable=True,
            user_message="The request timed out. Please try again.",
        )

    @classmethod
    def relay_connection_failed(
        cls, relay_url: str, cause: BaseException | None = None
    ) -> NetworkError:
        return cls(
            f"Failed to connect to relay: {relay_url}",
            code=ErrorCode.RELAY_CONNECTION_FAILED,
            cause=cause,
            context={"data": {"relay_url": relay_url}},
            recoverable=True,
            user_message="Could not connect to message relay. Retrying automatically.",
        )

    @classmethod
    def rate_limited(cls, relay_url: str, context: ContextLike = None) -> NetworkError:
        return cls(
            f"Rate limited by relay: {relay_url}",
            code=ErrorCode.RELAY_RATE_LIMITED,
            context=merge_context(context, data={"relay_url": relay_url}),
            recoverable=True,
        )

    @classmethod
    def webrtc_failed(
        cls, peer_id: str, cause: BaseException | None = None
    ) -> NetworkError:
        return cls(
            f"WebRTC connection failed to peer: {peer_id}",
            code=ErrorCode.WEBRTC_CONNECTION_FAILED,
            cause=cause,
            # Only a prefix of the peer id goes into the data bag
            context={"data": {"peer_id": f"{peer_id[:8]}..."}},
            recoverable=True,
            user_message="Could not establish peer connection. Using relay instead.",
        )


class CryptoError(BitChatError):
    """Key, signature and encryption failures. Never retried automatically."""

    default_code = ErrorCode.CRYPTO_NOT_READY
    default_category = ErrorCategory.CRYPTO

    @classmethod
    def not_ready(cls, context: ContextLike = None) -> CryptoError:
        return cls(
            "Crypto service not initialized",
            code=ErrorCode.CRYPTO_NOT_READY,
            context=context,
            user_message="Encryption is not ready. Please restart the app.",
        )

    @classmethod
    def decryption_failed(
        cls, cause: BaseException | None = None, context: ContextLike = None
    ) -> CryptoError:
        return cls(
            "Failed to decrypt data",
            code=ErrorCode.CRYPTO_DECRYPTION_FAILED,
            cause=cause,
            context=context,
            user_message="Could not decrypt this message. The key may be incorrect.",
        )

    @classmethod
    def encryption_failed(
        cls, cause: BaseException | None = None, context: ContextLike = None
    ) -> CryptoError:
        return cls(
            "Failed to encrypt data",
            code=ErrorCode.CRYPTO_ENCRYPTION_FAILED,
            cause=cause,
            context=context,
            user_message="Could not encrypt the message. Please try again.",
        )

    @classmethod
    def invalid_key(cls, key_type: str, context: ContextLike = None) -> CryptoError:
        return cls(
            f"Invalid {key_type} key",
            code=ErrorCode.CRYPTO_KEY_INVALID,
            context=merge_context(context, data={"key_type": key_type}),
            user_message="The provided key is invalid. Please check and try again.",
        )

    @classmethod
    def wasm_load_failed(cls, cause: BaseException | None = None) -> CryptoError:
        return cls(
            "Failed to load cryptographic library",
            code=ErrorCode.CRYPTO_WASM_LOAD_FAILED,
            cause=cause,
            user_message="Could not load encryption. This platform may not support required features.",
        )


class StorageError(BitChatError):
    """Local persistence failures."""

    default_code = ErrorCode.STORAGE_NOT_AVAILABLE
    default_category = ErrorCategory.STORAGE

    @classmethod
    def quota_exceeded(
        cls, context: ContextLike = None, cause: BaseException | None = None
    ) -> StorageError:
        return cls(
            "Storage quota exceeded",
            code=ErrorCode.STORAGE_QUOTA_EXCEEDED,
            cause=cause,
            context=context,
            user_message="Storage is full. Delete some messages or clear old data to continue.",
        )

    @classmethod
    def read_failed(
        cls, key: str, cause: BaseException | None = None, context: ContextLike = None
    ) -> StorageError:
        return cls(
            f"Failed to read data: {key}",
            code=ErrorCode.STORAGE_READ_FAILED,
            cause=cause,
            context=merge_context(context, data={"key": key}),
            recoverable=True,
            user_message="Could not load data. Please try again.",
        )

    @classmethod
    def write_failed(
        cls, key: str, cause: BaseException | None = None, context: ContextLike = None
    ) -> StorageError:
        return cls(
            f"Failed to write data: {key}",
            code=ErrorCode.STORAGE_WRITE_FAILED,
            cause=cause,
            context=merge_context(context, data={"key": key}),
            recoverable=True,
            user_message="Could not save data. Please try again.",
        )

    @classmethod
    def corrupted(cls, description: str, context: ContextLike = None) -> StorageError:
        return cls(
            f"Data corruption detected: {description}",
            code=ErrorCode.STORAGE_CORRUPTED,
            context=context,
            user_message="Data appears to be corrupted. You may need to clear app data.",
        )

    @classmethod
    def indexeddb_not_supported(cls) -> StorageError:
        return cls(
            "IndexedDB is not supported",
            code=ErrorCode.INDEXEDDB_NOT_SUPPORTED,
            user_message="Offline storage is not supported. Some features will not work.",
        )

    @classmethod
    def opfs_not_supported(cls) -> StorageError:
        return cls(
            "OPFS is not supported",
            code=ErrorCode.OPFS_NOT_SUPPORTED,
            # Callers fall back to IndexedDB
            recoverable=True,
            user_message="High-performance storage not available. Using fallback.",
        )


class IdentityError(BitChatError):
    """Missing, malformed or unimportable identities."""

    default_code = ErrorCode.IDENTITY_NOT_FOUND
    default_category = ErrorCategory.IDENTITY

    @classmethod
    def not_found(cls, context: ContextLike = None) -> IdentityError:
        return cls(
            "No identity found",
            code=ErrorCode.IDENTITY_NOT_FOUND,
            context=context,
            recoverable=True,
            user_message="No identity found. Please create or import one.",
        )

    @classmethod
    def import_failed(
        cls, reason: str, cause: BaseException | None = None
    ) -> IdentityError:
        return cls(
            f"Failed to import identity: {reason}",
            code=ErrorCode.IDENTITY_IMPORT_FAILED,
            cause=cause,
            recoverable=True,
            user_message="Could not import key. Please check the format and try again.",
        )

    @classmethod
    def invalid_key(cls, key_type: str) -> IdentityError:
        return cls(
            f"Invalid {key_type} key format",
            code=ErrorCode.IDENTITY_INVALID_KEY,
            context={"data": {"key_type": key_type}},
            recoverable=True,
            user_message=f"The {key_type} key format is invalid. Please check and try again.",
        )


class ProtocolError(BitChatError):
    """Nostr protocol failures: bad events, publish and NIP-17 errors."""

    default_code = ErrorCode.NOSTR_INVALID_EVENT
    default_category = ErrorCategory.PROTOCOL
    default_recoverable = True

    @classmethod
    def invalid_event(cls, reason: str, context: ContextLike = None) -> ProtocolError:
        return cls(
            f"Invalid Nostr event: {reason}",
            code=ErrorCode.NOSTR_INVALID_EVENT,
            context=context,
            recoverable=False,
            user_message="Received an invalid message. It has been ignored.",
        )

    @classmethod
    def publish_failed(
        cls, cause: BaseException | None = None, context: ContextLike = None
    ) -> ProtocolError:
        return cls(
            "Failed to publish event",
            code=ErrorCode.NOSTR_PUBLISH_FAILED,
            cause=cause,
            context=context,
            recoverable=True,
            user_message="Could not send message. Will retry automatically.",
        )

    @classmethod
    def nip17_decrypt_failed(cls, cause: BaseException | None = None) -> ProtocolError:
        return cls(
            "Failed to decrypt NIP-17 message",
            code=ErrorCode.NOSTR_NIP17_DECRYPT_FAILED,
            cause=cause,
            recoverable=False,
            user_message="Could not decrypt this direct message.",
        )


class SyncError(BitChatError):
    """Replica synchronisation failures."""

    default_code = ErrorCode.SYNC_FAILED
    default_category = ErrorCategory.SYNC
    default_severity = ErrorSeverity.WARNING
    default_recoverable = True

    @classmethod
    def conflict(cls, context: ContextLike = None) -> SyncError:
        return cls(
            "Sync conflict detected",
            code=ErrorCode.SYNC_CONFLICT,
            context=context,
            user_message="Sync conflict detected. Using most recent version.",
        )

    @classmethod
    def timeout(cls, context: ContextLike = None) -> SyncError:
        return cls(
            "Sync timed out",
            code=ErrorCode.SYNC_TIMEOUT,
            context=context,
            user_message="Sync is taking longer than expected. Retrying...",
        )


class ChannelError(BitChatError):
    """Channel lookup, access and geolocation failures."""

    default_code = ErrorCode.CHANNEL_NOT_FOUND
    default_category = ErrorCategory.CHANNEL
    default_recoverable = True

    @classmethod
    def geolocation_denied(cls) -> ChannelError:
        return cls(
            "Geolocation permission denied",
            code=ErrorCode.GEOLOCATION_DENIED,
            recoverable=False,
            user_message="Location access is required for nearby channels. Please enable it in settings.",
        )

    @classmethod
    def geolocation_unavailable(cls, cause: BaseException | None = None) -> ChannelError:
        return cls(
            "Geolocation unavailable",
            code=ErrorCode.GEOLOCATION_UNAVAILABLE,
            cause=cause,
            user_message="Could not determine your location. Please try again.",
        )


class PlatformIntegrationError(BitChatError):
    """Host platform integration failures (service worker, background sync)."""

    default_code = ErrorCode.SW_NOT_SUPPORTED
    default_category = ErrorCategory.PLATFORM
    default_severity = ErrorSeverity.WARNING
    default_recoverable = True

    @classmethod
    def not_supported(cls) -> PlatformIntegrationError:
        return cls(
            "Service worker not supported",
            code=ErrorCode.SW_NOT_SUPPORTED,
            recoverable=False,
            user_message=(
                "Offline mode is not available on this platform. "
                "The app will work but requires an internet connection."
            ),
        )

    @classmethod
    def registration_failed(
        cls, cause: BaseException | None = None
    ) -> PlatformIntegrationError:
        return cls(
            "Service worker registration failed",
            code=ErrorCode.SW_REGISTRATION_FAILED,
            cause=cause,
            user_message="Could not enable offline mode. Try restarting the app.",
        )


class ConfigError(BitChatError):
    """Configuration is invalid, missing, or malformed."""

    default_code = ErrorCode.INVALID_ARGUMENT


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Conversion
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _describe(value: object) -> str:
    try:
        return str(value)
    except Exception:
        return f"<unprintable {type(value).__name__}>"


@singledispatch
def coerce_error(value: object, context: ContextLike = None) -> BitChatError:
    """
    Turn anything that was raised or rejected into a BitChatError.

    Total over its input: typed errors pass through, exceptions are
    wrapped with the original as ``cause``, strings become the message,
    anything else is recorded in ``context.data["original_value"]``.
    """
    merged = merge_context(context)
    data = {**as_data(merged.get("data")), "original_value": _describe(value)}
    return BitChatError("Unknown error", context={**merged, "data": data})


@coerce_error.register(BitChatError)
def _coerce_typed(value: BitChatError, context: ContextLike = None) -> BitChatError:
    return value


@coerce_error.register(BaseException)
def _coerce_exception(value: BaseException, context: ContextLike = None) -> BitChatError:
    return BitChatError.from_error(value, context=context)


@coerce_error.register(str)
def _coerce_string(value: str, context: ContextLike = None) -> BitChatError:
    merged = merge_context(context)
    data = {**as_data(merged.get("data")), "original_value": value}
    return BitChatError(value or "Unknown error", context={**merged, "data": data})


_DISK_FULL = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


def from_host_exception(exc: BaseException, context: ContextLike = None) -> BitChatError:
    """Map well-known host exceptions onto specific codes."""
    if isinstance(exc, BitChatError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        return BitChatError(
            "Operation was aborted",
            code=ErrorCode.OPERATION_CANCELLED,
            cause=exc,
            context=context,
        )
    if isinstance(exc, TimeoutError):
        return BitChatError(
            "Operation timed out", code=ErrorCode.TIMEOUT, cause=exc, context=context
        )
    if isinstance(exc, OSError) and exc.errno in _DISK_FULL:
        return StorageError.quota_exceeded(context, cause=exc)
    if isinstance(exc, FileNotFoundError):
        return StorageError(
            "Resource not found",
            code=ErrorCode.STORAGE_READ_FAILED,
            cause=exc,
            context=context,
        )
    if isinstance(exc, PermissionError):
        return StorageError(
            "Security error accessing storage",
            code=ErrorCode.OPFS_ACCESS_DENIED,
            cause=exc,
            context=context,
        )
    return BitChatError.from_error(exc, context=context)


def wrap_errors(
    component: str | None = None,
    operation: str | None = None,
    error_class: type[BitChatError] = BitChatError,
) -> Callable[[F], F]:
    """
    Decorator translating exceptions raised by a sync or async callable.

    BitChatErrors get missing component/operation filled in and are
    re-raised; anything else is wrapped into ``error_class``.

    Usage:
        @wrap_errors(component="relay-pool", operation="publish", error_class=NetworkError)
        async def publish(event): ...
    """

    def translate(exc: Exception) -> BitChatError:
        if isinstance(exc, BitChatError):
            return exc.enrich_context(component, operation)
        return error_class(
            _describe(exc) or "Unknown error",
            cause=exc,
            context={"component": component, "operation": operation},
        )

    def decorator(func: F) -> F:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    translated = translate(exc)
                    if translated is exc:
                        raise
                    raise translated from exc

            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                translated = translate(exc)
                if translated is exc:
                    raise
                raise translated from exc

        return wrapper  # type: ignore[return-value]

    return decorator


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Predicates
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def is_bitchat_error(error: object) -> bool:
    return isinstance(error, BitChatError)


def is_network_error(error: object) -> bool:
    return isinstance(error, NetworkError)


def is_crypto_error(error: object) -> bool:
    return isinstance(error, CryptoError)


def is_storage_error(error: object) -> bool:
    return isinstance(error, StorageError)


def is_recoverable_error(error: object) -> bool:
    """Only typed errors can be recoverable; everything else is final."""
    return isinstance(error, BitChatError) and error.recoverable


def get_error_code(error: object) -> ErrorCode:
    if isinstance(error, BitChatError):
        return error.code
    return ErrorCode.UNKNOWN


def get_user_message(error: object) -> str:
    """User-facing text for any raised value. Never empty, never raises."""
    if isinstance(error, BitChatError):
        return error.user_message
    if isinstance(error, BaseException):
        return _describe(error) or GENERIC_USER_MESSAGE
    return GENERIC_USER_MESSAGE
