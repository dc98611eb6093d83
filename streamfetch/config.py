"""Configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from streamfetch.models.request import RequestType, RetryParameters

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


class Settings(BaseSettings):
    """Strongly typed settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SF_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Default retry parameters (milliseconds)
    retry_max_attempts: int = 2
    retry_base_delay_ms: float = 1000
    retry_backoff_factor: float = 2
    retry_fuzz_factor: float = 0.5
    retry_timeout_ms: float = 30000
    retry_stall_timeout_ms: float = 5000
    retry_connection_timeout_ms: float = 10000
    retry_profiles_path: Path | None = None

    # URI handling
    force_https: bool = False
    default_scheme: str = "https"

    # HTTP transport
    http_user_agent: str = "streamfetch/0.1"
    http_follow_redirects: bool = True
    http_progress_interval_ms: float = 100

    # Logging
    log_level: LogLevel = "INFO"
    log_json: bool = True

    def retry_parameters(self) -> RetryParameters:
        """Return default retry parameters built from settings."""
        return RetryParameters(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_ms,
            backoff_factor=self.retry_backoff_factor,
            fuzz_factor=self.retry_fuzz_factor,
            timeout=self.retry_timeout_ms,
            stall_timeout=self.retry_stall_timeout_ms,
            connection_timeout=self.retry_connection_timeout_ms,
        )

    @model_validator(mode="after")
    def validate_runtime_configuration(self) -> "Settings":
        """Validate cross-field configuration constraints."""
        if self.retry_max_attempts < 1:
            raise ValueError("SF_RETRY_MAX_ATTEMPTS must be >= 1")

        if self.retry_base_delay_ms < 0:
            raise ValueError("SF_RETRY_BASE_DELAY_MS must be >= 0")

        if self.retry_backoff_factor < 0:
            raise ValueError("SF_RETRY_BACKOFF_FACTOR must be >= 0")

        if self.retry_fuzz_factor < 0:
            raise ValueError("SF_RETRY_FUZZ_FACTOR must be >= 0")

        if self.retry_timeout_ms < 0:
            raise ValueError("SF_RETRY_TIMEOUT_MS must be >= 0")

        if self.retry_stall_timeout_ms < 0:
            raise ValueError("SF_RETRY_STALL_TIMEOUT_MS must be >= 0")

        if self.retry_connection_timeout_ms < 0:
            raise ValueError("SF_RETRY_CONNECTION_TIMEOUT_MS must be >= 0")

        if self.http_progress_interval_ms < 0:
            raise ValueError("SF_HTTP_PROGRESS_INTERVAL_MS must be >= 0")

        if not self.default_scheme or not self.default_scheme.isascii() or ":" in self.default_scheme:
            raise ValueError("SF_DEFAULT_SCHEME must be a bare scheme name such as 'https'")

        return self


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        parsed = yaml.safe_load(handle)

    if parsed is None:
        return {}

    if not isinstance(parsed, dict):
        raise ValueError(f"YAML config must be a mapping: {path}")

    return parsed


def load_retry_profiles(
    path: str | Path,
    base: RetryParameters | None = None,
) -> dict[RequestType, RetryParameters]:
    """Load per-request-type retry parameters from YAML.

    The file maps request type names (case-insensitive) to retry parameter
    overrides, e.g. `segment: {max_attempts: 5, base_delay: 500}`. Fields a
    profile omits are taken from `base` (usually `Settings.retry_parameters()`).
    """
    base_values = (base or RetryParameters()).model_dump()
    config_path = Path(path)
    payload = _load_yaml(config_path)

    profiles: dict[RequestType, RetryParameters] = {}
    for name, overrides in payload.items():
        try:
            request_type = RequestType[str(name).upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown request type {name!r} in retry profiles at {config_path}") from exc

        if overrides is not None and not isinstance(overrides, dict):
            raise ValueError(f"Retry profile {name!r} must be a mapping at {config_path}")

        try:
            profiles[request_type] = RetryParameters.model_validate({**base_values, **(overrides or {})})
        except ValidationError as exc:
            raise ValueError(f"Invalid retry profile {name!r} at {config_path}: {exc}") from exc

    return profiles


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings."""
    return Settings()
