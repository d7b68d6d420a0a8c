"""
BitChat errors — error taxonomy, global error handler and recovery engine.

Public API:
    from bitchat import NetworkError, handle_error, retry, CircuitBreaker
"""

__version__ = "0.1.0"

# Taxonomy
from bitchat.core.codes import ErrorCategory, ErrorCode, ErrorSeverity
from bitchat.core.types import ErrorContext, ErrorStats, LogEntry, SerializedError
from bitchat.core.errors import (
    BitChatError,
    ChannelError,
    ConfigError,
    CryptoError,
    IdentityError,
    NetworkError,
    PlatformIntegrationError,
    ProtocolError,
    StorageError,
    SyncError,
    coerce_error,
    from_host_exception,
    get_error_code,
    get_user_message,
    is_bitchat_error,
    is_crypto_error,
    is_network_error,
    is_recoverable_error,
    is_storage_error,
    wrap_errors,
)
from bitchat.core.config import (
    BitChatConfig,
    CircuitBreakerConfig,
    HandlerConfig,
    RetryConfig,
)

# Handler
from bitchat.core.handler import (
    ErrorHandler,
    create_safe,
    create_safe_async,
    get_error_handler,
    handle_error,
    init_error_handling,
    reset_error_handler,
)

# Recovery
from bitchat.recovery.retry import RetryResult, retry, with_retry
from bitchat.recovery.circuit import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    CircuitStats,
    with_circuit_breaker,
)
from bitchat.recovery.fallback import FallbackConfig, create_with_fallback, with_fallback
from bitchat.recovery.transient import (
    TRANSIENT_CATEGORIES,
    TRANSIENT_ERROR_CODES,
    get_backoff_time,
    is_transient_error,
    should_backoff,
)
from bitchat.recovery.strategy import RecoveryStrategy, apply_recovery, get_recovery_strategy
from bitchat.recovery.streams import create_error_debouncer, create_error_throttler

__all__ = [
    # Taxonomy
    "ErrorCategory",
    "ErrorCode",
    "ErrorSeverity",
    "ErrorContext",
    "ErrorStats",
    "LogEntry",
    "SerializedError",
    "BitChatError",
    "ChannelError",
    "ConfigError",
    "CryptoError",
    "IdentityError",
    "NetworkError",
    "PlatformIntegrationError",
    "ProtocolError",
    "StorageError",
    "SyncError",
    "coerce_error",
    "from_host_exception",
    "get_error_code",
    "get_user_message",
    "is_bitchat_error",
    "is_crypto_error",
    "is_network_error",
    "is_recoverable_error",
    "is_storage_error",
    "wrap_errors",
    # Config
    "BitChatConfig",
    "CircuitBreakerConfig",
    "HandlerConfig",
    "RetryConfig",
    # Handler
    "ErrorHandler",
    "create_safe",
    "create_safe_async",
    "get_error_handler",
    "handle_error",
    "init_error_handling",
    "reset_error_handler",
    # Recovery
    "RetryResult",
    "retry",
    "with_retry",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStats",
    "with_circuit_breaker",
    "FallbackConfig",
    "create_with_fallback",
    "with_fallback",
    "TRANSIENT_CATEGORIES",
    "TRANSIENT_ERROR_CODES",
    "get_backoff_time",
    "is_transient_error",
    "should_backoff",
    "RecoveryStrategy",
    "apply_recovery",
    "get_recovery_strategy",
    "create_error_debouncer",
    "create_error_throttler",
]
