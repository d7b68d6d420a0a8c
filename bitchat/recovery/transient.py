"""
Transient error classification and backoff hints.

These are hints for callers building their own retry loops; ``retry()``
uses its own exponential backoff and only borrows the code/category sets.
"""

from __future__ import annotations

from bitchat.core.codes import ErrorCategory, ErrorCode
from bitchat.core.errors import BitChatError, get_error_code

# Codes that are usually temporary and worth another attempt
TRANSIENT_ERROR_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.NETWORK_OFFLINE,
        ErrorCode.NETWORK_TIMEOUT,
        ErrorCode.RELAY_CONNECTION_FAILED,
        ErrorCode.RELAY_TIMEOUT,
        ErrorCode.RELAY_RATE_LIMITED,
        ErrorCode.WEBRTC_CONNECTION_FAILED,
        ErrorCode.WEBRTC_SIGNALING_FAILED,
        ErrorCode.SYNC_TIMEOUT,
        ErrorCode.SYNC_FAILED,
        ErrorCode.STORAGE_WRITE_FAILED,
        ErrorCode.STORAGE_READ_FAILED,
    }
)

TRANSIENT_CATEGORIES: frozenset[ErrorCategory] = frozenset(
    {ErrorCategory.NETWORK, ErrorCategory.SYNC}
)

DEFAULT_BACKOFF_MS = 1000

_BACKOFF_MS: dict[ErrorCode, int] = {
    ErrorCode.RELAY_RATE_LIMITED: 30000,
    ErrorCode.NETWORK_TIMEOUT: 5000,
    ErrorCode.RELAY_TIMEOUT: 5000,
    ErrorCode.SYNC_TIMEOUT: 5000,
    ErrorCode.RELAY_CONNECTION_FAILED: 10000,
    ErrorCode.WEBRTC_CONNECTION_FAILED: 10000,
}


def is_transient_error(error: object) -> bool:
    """True for transient codes, or typed errors in a transient category."""
    if get_error_code(error) in TRANSIENT_ERROR_CODES:
        return True
    if isinstance(error, BitChatError):
        return error.category in TRANSIENT_CATEGORIES
    return False


def should_backoff(error: object) -> bool:
    """Only a relay rate limit asks us to back off."""
    return get_error_code(error) == ErrorCode.RELAY_RATE_LIMITED


def get_backoff_time(error: object) -> int:
    """Suggested wait in milliseconds before trying again."""
    return _BACKOFF_MS.get(get_error_code(error), DEFAULT_BACKOFF_MS)
