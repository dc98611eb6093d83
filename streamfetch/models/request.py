"""Request models and classification enums for the networking engine."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RequestType(IntEnum):
    """Request classification, letting filters decide what to read or alter."""

    MANIFEST = 0
    SEGMENT = 1
    LICENSE = 2
    APP = 3
    TIMING = 4
    SERVER_CERTIFICATE = 5
    KEY = 6


class PluginPriority(IntEnum):
    """Only the highest-priority plugin registered for a scheme is used."""

    FALLBACK = 1
    PREFERRED = 2
    APPLICATION = 3


class RetryParameters(BaseModel):
    """Backoff and timeout settings for one logical request. Times are milliseconds."""

    model_config = ConfigDict(validate_assignment=True)

    max_attempts: int = 2
    base_delay: float = 1000
    backoff_factor: float = 2
    fuzz_factor: float = 0.5
    timeout: float = 30000
    stall_timeout: float = 5000
    connection_timeout: float = 10000

    @model_validator(mode="after")
    def validate_ranges(self) -> "RetryParameters":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.backoff_factor < 0:
            raise ValueError("backoff_factor must be >= 0")
        if self.fuzz_factor < 0:
            raise ValueError("fuzz_factor must be >= 0")
        for name in ("timeout", "stall_timeout", "connection_timeout"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        return self


class Request(BaseModel):
    """A network request. Filters may mutate it in place before dispatch."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    uris: list[str]
    method: str = "GET"
    body: bytes | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    allow_cross_site_credentials: bool = False
    retry_parameters: RetryParameters | None = None

    # Pass-through fields for higher layers; never inspected by the engine.
    license_request_type: str | None = None
    session_id: str | None = None
    drm_info: Any = None
    init_data: bytes | None = None
    init_data_type: str | None = None
    stream_data_callback: Callable[[bytes], Awaitable[None]] | None = None


def make_request(
    uris: list[str],
    retry_parameters: RetryParameters,
    stream_data_callback: Callable[[bytes], Awaitable[None]] | None = None,
) -> Request:
    """Build a simple GET request for the given URIs."""
    return Request(
        uris=list(uris),
        method="GET",
        body=None,
        headers={},
        allow_cross_site_credentials=False,
        retry_parameters=retry_parameters,
        stream_data_callback=stream_data_callback,
    )
