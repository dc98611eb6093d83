"""Error model shared by operations, plugins, and the networking engine."""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class Severity(IntEnum):
    RECOVERABLE = 1
    CRITICAL = 2


class Category(IntEnum):
    NETWORK = 1
    PLAYER = 7


class ErrorCode(IntEnum):
    UNSUPPORTED_SCHEME = 1000
    BAD_HTTP_STATUS = 1001
    HTTP_ERROR = 1002
    TIMEOUT = 1003
    MALFORMED_DATA_URI = 1004
    REQUEST_FILTER_ERROR = 1006
    RESPONSE_FILTER_ERROR = 1007
    ATTEMPTS_EXHAUSTED = 1010
    OPERATION_ABORTED = 7001


class NetworkError(Exception):
    """Categorized failure raised anywhere along the request path.

    `data` carries code-specific details. For BAD_HTTP_STATUS it is
    `(uri, status, response_text, headers, request_type)`.
    """

    def __init__(self, severity: Severity, category: Category, code: ErrorCode, *data: Any):
        super().__init__(severity, category, code, *data)
        self.severity = severity
        self.category = category
        self.code = code
        self.data = tuple(data)

    def __str__(self) -> str:
        base = f"{self.code.name} ({int(self.code)}, severity={self.severity.name})"
        if self.data:
            return f"{base}: {', '.join(repr(item) for item in self.data)}"
        return base

    @property
    def recoverable(self) -> bool:
        return self.severity == Severity.RECOVERABLE

    @property
    def http_status(self) -> int:
        """Return the HTTP status of a BAD_HTTP_STATUS error, else 0."""
        if self.code == ErrorCode.BAD_HTTP_STATUS and len(self.data) > 1:
            return int(self.data[1])
        return 0


def abort_error() -> NetworkError:
    """Return a fresh instance of the canonical abort error."""
    return NetworkError(Severity.CRITICAL, Category.PLAYER, ErrorCode.OPERATION_ABORTED)


def is_abort_error(error: BaseException | None) -> bool:
    return isinstance(error, NetworkError) and error.code == ErrorCode.OPERATION_ABORTED
