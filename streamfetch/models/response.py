"""Response model produced by scheme plugins."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Response(BaseModel):
    """Result of one successful transport attempt."""

    uri: str
    original_uri: str
    data: bytes = b""
    status: int | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    from_cache: bool = False
    time_ms: float | None = None
