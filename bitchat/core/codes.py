"""
BitChat error codes, categories and severities.

Codes are stable numeric identifiers grouped by their leading digit:

    1xxx generic      4xxx storage     7xxx sync
    2xxx network      5xxx identity    8xxx channel
    3xxx crypto       6xxx protocol    9xxx platform integration

A code is a classification key, never a display string. What the user sees
comes from the user-message table at the bottom of this module.
"""

from __future__ import annotations

from enum import Enum, IntEnum


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Categories & Severities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ErrorCategory(str, Enum):
    """Coarse grouping of codes, used for handler routing and statistics."""

    GENERIC = "generic"
    NETWORK = "network"
    CRYPTO = "crypto"
    STORAGE = "storage"
    IDENTITY = "identity"
    PROTOCOL = "protocol"
    SYNC = "sync"
    CHANNEL = "channel"
    PLATFORM = "platform"


class ErrorSeverity(str, Enum):
    """
    Ordered severity levels: INFO < WARNING < ERROR < CRITICAL.

    Severity selects the console channel and whether a failure
    blocks the user.
    """

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def level(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ErrorSeverity):
            return NotImplemented
        return self.level >= other.level


_SEVERITY_ORDER = [
    ErrorSeverity.INFO,
    ErrorSeverity.WARNING,
    ErrorSeverity.ERROR,
    ErrorSeverity.CRITICAL,
]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Codes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ErrorCode(IntEnum):
    """Closed set of failure codes. Format: CATEGORY_SPECIFIC_ERROR."""

    # Generic (1xxx)
    UNKNOWN = 1000
    INVALID_ARGUMENT = 1001
    NOT_INITIALIZED = 1002
    OPERATION_CANCELLED = 1003
    TIMEOUT = 1004
    NOT_SUPPORTED = 1005

    # Network (2xxx)
    NETWORK_OFFLINE = 2000
    NETWORK_TIMEOUT = 2001
    NETWORK_DNS_FAILURE = 2002
    RELAY_CONNECTION_FAILED = 2010
    RELAY_AUTHENTICATION_FAILED = 2011
    RELAY_TIMEOUT = 2012
    RELAY_MESSAGE_REJECTED = 2013
    RELAY_RATE_LIMITED = 2014
    WEBRTC_CONNECTION_FAILED = 2020
    WEBRTC_SIGNALING_FAILED = 2021
    WEBRTC_DATA_CHANNEL_ERROR = 2022
    WEBRTC_ICE_FAILED = 2023

    # Crypto (3xxx)
    CRYPTO_NOT_READY = 3000
    CRYPTO_KEY_GENERATION_FAILED = 3001
    CRYPTO_ENCRYPTION_FAILED = 3002
    CRYPTO_DECRYPTION_FAILED = 3003
    CRYPTO_SIGNATURE_INVALID = 3004
    CRYPTO_KEY_INVALID = 3005
    CRYPTO_NONCE_REUSE = 3006
    CRYPTO_WASM_LOAD_FAILED = 3007

    # Storage (4xxx)
    STORAGE_NOT_AVAILABLE = 4000
    STORAGE_QUOTA_EXCEEDED = 4001
    STORAGE_READ_FAILED = 4002
    STORAGE_WRITE_FAILED = 4003
    STORAGE_DELETE_FAILED = 4004
    STORAGE_CORRUPTED = 4005
    STORAGE_MIGRATION_FAILED = 4006
    INDEXEDDB_NOT_SUPPORTED = 4010
    INDEXEDDB_BLOCKED = 4011
    OPFS_NOT_SUPPORTED = 4020
    OPFS_ACCESS_DENIED = 4021

    # Identity (5xxx)
    IDENTITY_NOT_FOUND = 5000
    IDENTITY_INVALID_KEY = 5001
    IDENTITY_IMPORT_FAILED = 5002
    IDENTITY_EXPORT_FAILED = 5003
    IDENTITY_CREATION_FAILED = 5004

    # Nostr protocol (6xxx)
    NOSTR_INVALID_EVENT = 6000
    NOSTR_SIGNATURE_FAILED = 6001
    NOSTR_PUBLISH_FAILED = 6002
    NOSTR_SUBSCRIPTION_FAILED = 6003
    NOSTR_NIP17_DECRYPT_FAILED = 6010
    NOSTR_NIP17_ENCRYPT_FAILED = 6011

    # Sync (7xxx)
    SYNC_CONFLICT = 7000
    SYNC_VERSION_MISMATCH = 7001
    SYNC_TIMEOUT = 7002
    SYNC_FAILED = 7003

    # Channel (8xxx)
    CHANNEL_NOT_FOUND = 8000
    CHANNEL_ACCESS_DENIED = 8001
    CHANNEL_CREATION_FAILED = 8002
    GEOLOCATION_DENIED = 8010
    GEOLOCATION_UNAVAILABLE = 8011
    GEOLOCATION_TIMEOUT = 8012

    # Service worker / platform integration (9xxx)
    SW_NOT_SUPPORTED = 9000
    SW_REGISTRATION_FAILED = 9001
    SW_UPDATE_FAILED = 9002
    SW_CACHE_FAILED = 9003

    @property
    def category(self) -> ErrorCategory:
        """The category implied by the code's leading digit."""
        return _CATEGORY_BY_DIGIT.get(self.value // 1000, ErrorCategory.GENERIC)


_CATEGORY_BY_DIGIT: dict[int, ErrorCategory] = {
    1: ErrorCategory.GENERIC,
    2: ErrorCategory.NETWORK,
    3: ErrorCategory.CRYPTO,
    4: ErrorCategory.STORAGE,
    5: ErrorCategory.IDENTITY,
    6: ErrorCategory.PROTOCOL,
    7: ErrorCategory.SYNC,
    8: ErrorCategory.CHANNEL,
    9: ErrorCategory.PLATFORM,
}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# User Messages
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

GENERIC_USER_MESSAGE = "An unexpected error occurred. Please try again."
FALLBACK_USER_MESSAGE = "Something went wrong. Please try again."

DEFAULT_USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.UNKNOWN: GENERIC_USER_MESSAGE,
    ErrorCode.NETWORK_OFFLINE: "You appear to be offline. Check your connection.",
    ErrorCode.NETWORK_TIMEOUT: "Request timed out. Please try again.",
    ErrorCode.RELAY_CONNECTION_FAILED: "Could not connect to relay. Retrying...",
    ErrorCode.RELAY_RATE_LIMITED: "Too many requests. Please slow down.",
    ErrorCode.CRYPTO_DECRYPTION_FAILED: "Could not decrypt message. The key may have changed.",
    ErrorCode.STORAGE_QUOTA_EXCEEDED: "Storage is full. Please free up some space.",
    ErrorCode.STORAGE_NOT_AVAILABLE: "Storage is not available. Some features may not work.",
    ErrorCode.IDENTITY_NOT_FOUND: "No identity found. Please create or import one.",
    ErrorCode.GEOLOCATION_DENIED: "Location access denied. Enable it for nearby channels.",
    ErrorCode.SW_NOT_SUPPORTED: "Offline mode not supported on this platform.",
}


def default_user_message(code: ErrorCode | int) -> str:
    """Look up the default user-facing string for a code."""
    try:
        return DEFAULT_USER_MESSAGES.get(ErrorCode(code), FALLBACK_USER_MESSAGE)
    except ValueError:
        return FALLBACK_USER_MESSAGE
