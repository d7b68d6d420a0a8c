"""
BitChat error-handling configuration: loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (BITCHAT_*)
3. Project config (./bitchat.toml)
4. User config (~/.bitchat/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    BITCHAT_MAX_LOG_SIZE → handler.max_log_size
    BITCHAT_LOG_TO_CONSOLE → handler.log_to_console
    BITCHAT_RETRY_MAX_ATTEMPTS → retry.max_attempts
    BITCHAT_CIRCUIT_FAILURE_THRESHOLD → circuit.failure_threshold
    BITCHAT_LOG_LEVEL → logging.level
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, Field, ValidationError

from bitchat.core.codes import ErrorCategory, ErrorCode
from bitchat.core.errors import ConfigError

M = TypeVar("M", bound=BaseModel)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class HandlerConfig(BaseModel):
    """Global error handler (dispatcher) configuration."""

    max_log_size: int = Field(default=100, ge=1)
    log_to_console: bool = True
    capture_unhandled_rejections: bool = True
    capture_global_errors: bool = True


class RetryConfig(BaseModel):
    """Retry with exponential backoff."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_ms: float = Field(default=1000, ge=0)
    max_delay_ms: float = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2, gt=0)
    jitter_factor: float = Field(default=0.2, ge=0, le=1)
    # None means "use the transient defaults"
    retryable_codes: list[ErrorCode] | None = None
    retryable_categories: list[ErrorCategory] | None = None
    is_retryable: Callable[[Any, int], bool] | None = None
    on_retry: Callable[[Any, int, int], Any] | None = None


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker thresholds and timings."""

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_ms: float = Field(default=30000, ge=0)
    success_threshold: int = Field(default=2, ge=1)
    window_ms: float = Field(default=60000, gt=0)
    on_state_change: Callable[[Any, Any], Any] | None = None


class LoggingConfig(BaseModel):
    """Console/file logging for the bitchat logger tree."""

    level: str = "WARNING"
    log_dir: str | None = None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BitChatConfig(BaseModel):
    """Root configuration for the error subsystem."""

    handler: HandlerConfig = Field(default_factory=HandlerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> BitChatConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        user_config_path = user_path or Path.home() / ".bitchat" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        project_config_path = project_path or Path.cwd() / "bitchat.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        _deep_merge(merged, _load_from_env())

        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return BitChatConfig(**merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}", cause=e) from e


def merge_config(model: M, overrides: dict[str, Any]) -> M:
    """Return a validated copy of ``model`` with ``overrides`` applied."""
    if not overrides:
        return model
    unknown = set(overrides) - set(type(model).model_fields)
    if unknown:
        raise ConfigError(
            f"Unknown {type(model).__name__} fields: {', '.join(sorted(unknown))}"
        )
    try:
        return type(model).model_validate({**model.model_dump(), **overrides})
    except ValidationError as e:
        raise ConfigError(f"Invalid {type(model).__name__}: {e}", cause=e) from e


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    import tomllib

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config from {path}: {e}", cause=e) from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from BITCHAT_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "BITCHAT_MAX_LOG_SIZE": ("handler", "max_log_size"),
        "BITCHAT_LOG_TO_CONSOLE": ("handler", "log_to_console"),
        "BITCHAT_CAPTURE_UNHANDLED_REJECTIONS": ("handler", "capture_unhandled_rejections"),
        "BITCHAT_CAPTURE_GLOBAL_ERRORS": ("handler", "capture_global_errors"),
        "BITCHAT_RETRY_MAX_ATTEMPTS": ("retry", "max_attempts"),
        "BITCHAT_RETRY_INITIAL_DELAY_MS": ("retry", "initial_delay_ms"),
        "BITCHAT_RETRY_MAX_DELAY_MS": ("retry", "max_delay_ms"),
        "BITCHAT_RETRY_JITTER_FACTOR": ("retry", "jitter_factor"),
        "BITCHAT_CIRCUIT_FAILURE_THRESHOLD": ("circuit", "failure_threshold"),
        "BITCHAT_CIRCUIT_RECOVERY_TIMEOUT_MS": ("circuit", "recovery_timeout_ms"),
        "BITCHAT_CIRCUIT_WINDOW_MS": ("circuit", "window_ms"),
        "BITCHAT_LOG_LEVEL": ("logging", "level"),
        "BITCHAT_LOG_DIR": ("logging", "log_dir"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _substitute(value: str) -> str:
    for var_name in _ENV_PATTERN.findall(value):
        value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
    return value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _substitute(value)
        elif isinstance(value, list):
            data[key] = [_substitute(v) if isinstance(v, str) else v for v in value]
