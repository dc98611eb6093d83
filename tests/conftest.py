"""Shared test fixtures for streamfetch."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from streamfetch.errors import Category, ErrorCode, NetworkError, Severity, abort_error
from streamfetch.models import PluginPriority, Request, RequestType, Response, RetryParameters
from streamfetch.net import NetworkingEngine, SchemeRegistry
from streamfetch.utils import CancelableOperation

HANG = object()


def bad_status(uri: str, status: int = 500) -> NetworkError:
    severity = Severity.CRITICAL if status in (401, 403) else Severity.RECOVERABLE
    return NetworkError(
        severity,
        Category.NETWORK,
        ErrorCode.BAD_HTTP_STATUS,
        uri,
        status,
        None,
        {},
        RequestType.SEGMENT,
    )


def ok_response(uri: str, data: bytes = b"payload", **kwargs: Any) -> Response:
    return Response(uri=uri, original_uri=uri, data=data, status=200, **kwargs)


class FakePlugin:
    """Scripted scheme plugin that records every call.

    Each call consumes the next scripted outcome: a Response, an exception,
    `HANG` for a transfer that never settles until aborted, or a callable
    receiving `(uri, progress_updated, headers_received)` and returning a
    CancelableOperation. With no script left it succeeds.
    """

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes)
        self.calls: list[str] = []
        self.requests: list[Request] = []
        self.aborts = 0

    def __call__(self, uri, request, request_type, progress_updated, headers_received):  # noqa: ANN001
        self.calls.append(uri)
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else ok_response(uri)
        if outcome is HANG:
            return self.hanging()
        if isinstance(outcome, BaseException):
            return CancelableOperation.failed(outcome)
        if isinstance(outcome, Response):
            return CancelableOperation.completed(outcome)
        return outcome(uri, progress_updated, headers_received)

    def hanging(self) -> CancelableOperation[Response]:
        future = asyncio.get_running_loop().create_future()

        async def _abort() -> None:
            self.aborts += 1
            if not future.done():
                future.set_exception(abort_error())

        return CancelableOperation(future, _abort)


def fast_retry(**overrides: Any) -> RetryParameters:
    """Retry parameters with no delays and no timers unless overridden."""
    values: dict[str, Any] = {
        "max_attempts": 2,
        "base_delay": 0,
        "backoff_factor": 1,
        "fuzz_factor": 0,
        "timeout": 0,
        "stall_timeout": 0,
        "connection_timeout": 0,
    }
    values.update(overrides)
    return RetryParameters(**values)


async def wait_until(predicate, attempts: int = 200) -> None:  # noqa: ANN001
    """Yield to the event loop until `predicate()` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def fake_plugin() -> FakePlugin:
    return FakePlugin()


@pytest.fixture
def registry(fake_plugin: FakePlugin) -> SchemeRegistry:
    """Return an isolated scheme registry with `fake://` served by `fake_plugin`."""
    scheme_registry = SchemeRegistry()
    scheme_registry.register("fake", fake_plugin, PluginPriority.APPLICATION)
    return scheme_registry


@pytest_asyncio.fixture
async def make_engine(registry: SchemeRegistry):
    """Factory for engines bound to the isolated registry; all are destroyed after the test."""
    engines: list[NetworkingEngine] = []

    def _make(**kwargs: Any) -> NetworkingEngine:
        networking_engine = NetworkingEngine(registry=registry, **kwargs)
        engines.append(networking_engine)
        return networking_engine

    yield _make
    for networking_engine in engines:
        await networking_engine.destroy()


@pytest.fixture
def engine(make_engine) -> NetworkingEngine:  # noqa: ANN001
    return make_engine()


@pytest.fixture
def create_test_request():
    """Factory for quickly creating requests against `fake://` URIs."""

    def _create(*uris: str, **retry_overrides: Any) -> Request:
        return NetworkingEngine.make_request(list(uris or ("fake://host/a",)), fast_retry(**retry_overrides))

    return _create
