"""Networking engine: filters, scheme plugins, retries, and timeouts for every request."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog

from streamfetch.config import Settings, load_retry_profiles
from streamfetch.errors import Category, ErrorCode, NetworkError, Severity, abort_error, is_abort_error
from streamfetch.models.request import PluginPriority, Request, RequestType, RetryParameters, make_request
from streamfetch.models.response import Response
from streamfetch.net.backoff import Backoff
from streamfetch.net.plugins import HttpPlugin, register_default_plugins
from streamfetch.net.scheme_registry import SchemePlugin, SchemeRegistration, SchemeRegistry, default_registry
from streamfetch.utils.operation import CancelableOperation
from streamfetch.utils.operation_manager import OperationManager
from streamfetch.utils.timer import Timer

logger = structlog.get_logger(__name__)

OnProgressUpdated = Callable[[float, int], Any]
OnHeadersReceived = Callable[[dict[str, str], Request, RequestType], Any]
OnDownloadFailed = Callable[[Request, NetworkError | None, int, bool], Any]
RequestFilter = Callable[[RequestType, Request], Any]
ResponseFilter = Callable[[RequestType, Response], Any]
EventListener = Callable[[Any], Any]


@dataclass(frozen=True)
class RetryEvent:
    """Dispatched each time a recoverable failure moves the request to its next URI."""

    error: NetworkError | None
    type: str = "retry"


class BytesRemaining:
    """Mutable holder shared between progress callbacks and the pending request."""

    def __init__(self) -> None:
        self.value = 0


class PendingRequest(CancelableOperation[Response]):
    """An in-flight request that can be aborted and reports bytes left to download."""

    def __init__(self, result: Any, on_abort: Callable[[], Any], bytes_remaining: BytesRemaining):
        super().__init__(result, on_abort)
        self._bytes_remaining = bytes_remaining

    @property
    def bytes_remaining(self) -> int:
        return self._bytes_remaining.value


@dataclass
class _ResponseAndGotProgress:
    response: Response
    got_progress: bool


@dataclass
class _AttemptState:
    got_progress: bool = False
    headers_received_called: bool = False
    timed_out: bool = False
    timers: list[Timer] = field(default_factory=list)

    def stop_timers(self) -> None:
        for timer in self.timers:
            timer.stop()


class NetworkingEngine:
    """Dispatch requests to scheme plugins with filtering, retries, and timeouts.

    Each scheme has at most one plugin. Request filters run in registration
    order before the transport call, response filters after a successful one.
    Recoverable failures rotate through the request's URIs under a fuzzed
    exponential backoff until attempts run out.
    """

    def __init__(
        self,
        on_progress_updated: OnProgressUpdated | None = None,
        on_headers_received: OnHeadersReceived | None = None,
        on_download_failed: OnDownloadFailed | None = None,
        *,
        registry: SchemeRegistry | None = None,
        default_scheme: str = "https",
        default_retry_parameters: RetryParameters | None = None,
        retry_profiles: Mapping[RequestType, RetryParameters] | None = None,
        backoff_factory: Callable[[RetryParameters], Backoff] | None = None,
    ):
        self.registry = registry if registry is not None else default_registry
        self.default_scheme = default_scheme
        self._on_progress_updated = on_progress_updated
        self._on_headers_received = on_headers_received
        self._on_download_failed = on_download_failed
        self._default_retry_parameters = default_retry_parameters
        self._retry_profiles = dict(retry_profiles or {})
        self._backoff_factory = backoff_factory or (lambda parameters: Backoff(parameters, auto_reset=False))
        self._destroyed = False
        self._force_https = False
        self._operation_manager = OperationManager()
        self._request_filters: dict[RequestFilter, None] = {}
        self._response_filters: dict[ResponseFilter, None] = {}
        self._listeners: dict[str, list[EventListener]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self.http_plugin: HttpPlugin | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "NetworkingEngine":
        """Build an engine from `streamfetch.config.Settings`.

        Retry profiles inherit the `SF_RETRY_*` defaults, and the built-in plugins
        are registered with an HTTP plugin configured by the `SF_HTTP_*` settings.
        """
        retry_parameters = settings.retry_parameters()
        retry_profiles = None
        if settings.retry_profiles_path is not None:
            retry_profiles = load_retry_profiles(settings.retry_profiles_path, base=retry_parameters)
        engine = cls(
            default_scheme=settings.default_scheme,
            default_retry_parameters=retry_parameters,
            retry_profiles=retry_profiles,
            **kwargs,
        )
        engine.set_force_https(settings.force_https)
        engine.http_plugin = register_default_plugins(engine.registry, settings=settings)
        return engine

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def set_force_https(self, force_https: bool) -> None:
        self._force_https = force_https

    # Scheme plugins

    def register_scheme(
        self,
        scheme: str,
        plugin: SchemePlugin,
        priority: int | None = None,
        progress_support: bool = False,
    ) -> bool:
        """Register a plugin unless a higher-priority one already owns the scheme."""
        registered = self.registry.register(scheme, plugin, priority, progress_support)
        logger.debug(
            "scheme_registered",
            scheme=scheme,
            priority=int(priority or PluginPriority.APPLICATION),
            registered=registered,
        )
        return registered

    def unregister_scheme(self, scheme: str) -> None:
        self.registry.unregister(scheme)

    # Filters

    def register_request_filter(self, request_filter: RequestFilter) -> None:
        self._request_filters[request_filter] = None

    def unregister_request_filter(self, request_filter: RequestFilter) -> None:
        self._request_filters.pop(request_filter, None)

    def clear_all_request_filters(self) -> None:
        self._request_filters.clear()

    def register_response_filter(self, response_filter: ResponseFilter) -> None:
        self._response_filters[response_filter] = None

    def unregister_response_filter(self, response_filter: ResponseFilter) -> None:
        self._response_filters.pop(response_filter, None)

    def clear_all_response_filters(self) -> None:
        self._response_filters.clear()

    # Events

    def add_event_listener(self, event_type: str, listener: EventListener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def remove_event_listener(self, event_type: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch_event(self, event: RetryEvent) -> None:
        for listener in list(self._listeners.get(event.type, [])):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("event_listener_failed", event_type=event.type)

    # Helpers

    @staticmethod
    def default_retry_parameters() -> RetryParameters:
        return Backoff.default_retry_parameters()

    @staticmethod
    def make_request(
        uris: list[str],
        retry_parameters: RetryParameters,
        stream_data_callback: Callable[[bytes], Any] | None = None,
    ) -> Request:
        return make_request(uris, retry_parameters, stream_data_callback)

    async def destroy(self) -> None:
        """Abort every pending request and reject all future ones."""
        self._destroyed = True
        self._request_filters.clear()
        self._response_filters.clear()
        self._listeners.clear()
        logger.info("engine_destroyed", pending=len(self._operation_manager))
        await self._operation_manager.destroy()

    # Requests

    def request(self, request_type: RequestType, request: Request) -> PendingRequest:
        """Make a network request and return an abortable handle to its response."""
        bytes_remaining = BytesRemaining()

        if self._destroyed:
            aborted = CancelableOperation.aborted()
            return PendingRequest(aborted.result, aborted.abort, bytes_remaining)

        if not request.uris:
            raise ValueError("Request without URIs")

        # Copy mutable inputs so filters cannot contaminate later requests.
        request.method = request.method or "GET"
        request.headers = request.headers or {}
        if request.retry_parameters is not None:
            request.retry_parameters = request.retry_parameters.model_copy(deep=True)
        else:
            request.retry_parameters = self._retry_parameters_for(request_type)
        request.uris = list(request.uris)

        log = logger.bind(request_type=request_type.name, uri=request.uris[0])
        log.debug("request_started", uri_count=len(request.uris))

        timing = {"request_filter_ms": 0.0, "response_filter_started": 0.0}
        request_filter_started = time.monotonic()

        def _request_filters_done(_succeeded: bool) -> None:
            timing["request_filter_ms"] = (time.monotonic() - request_filter_started) * 1000

        def _transport_done(_succeeded: bool) -> None:
            timing["response_filter_started"] = time.monotonic()

        request_filter_operation = self._filter_request(request_type, request).on_settled(_request_filters_done)
        request_operation = request_filter_operation.chain(
            lambda _: self._make_request_with_retry(request_type, request, bytes_remaining)
        ).on_settled(_transport_done)
        response_filter_operation = request_operation.chain(
            lambda response_and_got_progress: self._filter_response(request_type, response_and_got_progress)
        )

        def _finish(response_and_got_progress: _ResponseAndGotProgress) -> Response:
            response_filter_ms = (time.monotonic() - timing["response_filter_started"]) * 1000
            response = response_and_got_progress.response
            response.time_ms = (response.time_ms or 0.0) + timing["request_filter_ms"] + response_filter_ms
            if (
                not response_and_got_progress.got_progress
                and self._on_progress_updated is not None
                and not response.from_cache
                and request_type == RequestType.SEGMENT
            ):
                self._on_progress_updated(response.time_ms, len(response.data))
            log.debug("request_completed", status=response.status, time_ms=round(response.time_ms, 1))
            return response

        def _fail(error: BaseException) -> None:
            # Retries are exhausted by the time an error gets here.
            if isinstance(error, NetworkError):
                error.severity = Severity.CRITICAL
            if is_abort_error(error):
                log.info("request_aborted")
            else:
                log.warning("request_failed", error=str(error))
            raise error

        operation = response_filter_operation.chain(_finish, _fail)
        pending_request = PendingRequest(operation.result, operation.abort, bytes_remaining)
        self._operation_manager.manage(pending_request)
        return pending_request

    def _retry_parameters_for(self, request_type: RequestType) -> RetryParameters:
        parameters = self._retry_profiles.get(request_type) or self._default_retry_parameters
        if parameters is None:
            return self.default_retry_parameters()
        return parameters.model_copy(deep=True)

    def _filter_request(self, request_type: RequestType, request: Request) -> CancelableOperation[Any]:
        def _run(request_filter: RequestFilter) -> Any:
            if request.body is not None:
                request.body = bytes(request.body)
            return request_filter(request_type, request)

        operation: CancelableOperation[Any] = CancelableOperation.completed(None)
        for request_filter in list(self._request_filters):
            operation = operation.chain(lambda _, request_filter=request_filter: _run(request_filter))

        def _wrap_error(error: BaseException) -> None:
            if is_abort_error(error):
                raise error
            raise NetworkError(
                Severity.CRITICAL,
                Category.NETWORK,
                ErrorCode.REQUEST_FILTER_ERROR,
                error,
            ) from error

        return operation.chain(None, _wrap_error)

    def _filter_response(
        self,
        request_type: RequestType,
        response_and_got_progress: _ResponseAndGotProgress,
    ) -> CancelableOperation[_ResponseAndGotProgress]:
        def _run(response_filter: ResponseFilter) -> Any:
            response = response_and_got_progress.response
            if response.data is not None:
                response.data = bytes(response.data)
            return response_filter(request_type, response)

        operation: CancelableOperation[Any] = CancelableOperation.completed(None)
        for response_filter in list(self._response_filters):
            operation = operation.chain(lambda _, response_filter=response_filter: _run(response_filter))

        def _wrap_error(error: BaseException) -> None:
            severity = Severity.CRITICAL
            if isinstance(error, NetworkError):
                if is_abort_error(error):
                    raise error
                severity = error.severity
            raise NetworkError(severity, Category.NETWORK, ErrorCode.RESPONSE_FILTER_ERROR, error) from error

        return operation.chain(lambda _: response_and_got_progress, _wrap_error)

    def _make_request_with_retry(
        self,
        request_type: RequestType,
        request: Request,
        bytes_remaining: BytesRemaining,
    ) -> CancelableOperation[_ResponseAndGotProgress]:
        assert request.retry_parameters is not None
        backoff = self._backoff_factory(request.retry_parameters)
        return CancelableOperation.from_coroutine(
            self._send_with_retry(request_type, request, backoff, bytes_remaining)
        )

    async def _send_with_retry(
        self,
        request_type: RequestType,
        request: Request,
        backoff: Backoff,
        bytes_remaining: BytesRemaining,
    ) -> _ResponseAndGotProgress:
        """Try each URI in turn until one succeeds or attempts run out."""
        log = logger.bind(request_type=request_type.name)
        index = 0
        last_error: NetworkError | None = None

        while True:
            uri, registration = self._resolve_plugin(request, index)

            try:
                await _await_live(backoff.attempt())
            except NetworkError as error:
                if error.code == ErrorCode.ATTEMPTS_EXHAUSTED and last_error is not None:
                    raise last_error from None
                raise

            if self._destroyed:
                raise abort_error()

            try:
                return await self._send_once(request_type, request, uri, registration, bytes_remaining)
            except Exception as error:  # noqa: BLE001
                if self._destroyed:
                    raise abort_error() from error
                if not isinstance(error, NetworkError) or is_abort_error(error) or not error.recoverable:
                    raise
                if backoff.max_attempts <= 1:
                    # No retry is possible, so none is announced.
                    raise

                log.info("request_retry", uri=uri, error=str(error), attempt=backoff.num_attempts)
                self.dispatch_event(RetryEvent(error=error))
                last_error = error
                index = (index + 1) % len(request.uris)

    def _resolve_plugin(self, request: Request, index: int) -> tuple[str, SchemeRegistration]:
        uri = request.uris[index]
        if self._force_https:
            uri = uri.replace("http://", "https://", 1)
            request.uris[index] = uri

        parts = urlsplit(uri)
        scheme = parts.scheme
        if not scheme:
            # Make the inferred scheme explicit in the request.
            scheme = self.default_scheme
            uri = urlunsplit(parts._replace(scheme=scheme))
            request.uris[index] = uri

        # Schemes are case-insensitive (RFC 3986 section 3.1).
        registration = self.registry.get(scheme.lower())
        if registration is None:
            raise NetworkError(Severity.CRITICAL, Category.NETWORK, ErrorCode.UNSUPPORTED_SCHEME, uri)
        return uri, registration

    async def _send_once(
        self,
        request_type: RequestType,
        request: Request,
        uri: str,
        registration: SchemeRegistration,
        bytes_remaining: BytesRemaining,
    ) -> _ResponseAndGotProgress:
        """Run one transport attempt with connection and stall timers."""
        assert request.retry_parameters is not None
        parameters = request.retry_parameters
        state = _AttemptState()
        started = time.monotonic()
        plugin_operation: CancelableOperation[Response] | None = None

        def _timed_out() -> None:
            state.timed_out = True
            if plugin_operation is not None:
                self._spawn(plugin_operation.abort())

        connection_timer = Timer(_timed_out)
        stall_timer = Timer(_timed_out)
        state.timers.extend([connection_timer, stall_timer])
        stall_armed = registration.progress_support and bool(parameters.stall_timeout)

        def _progress_updated(elapsed_ms: float, num_bytes: int, num_bytes_remaining: int) -> None:
            connection_timer.stop()
            if stall_armed:
                stall_timer.tick_after(parameters.stall_timeout / 1000.0)
            bytes_remaining.value = num_bytes_remaining
            if self._on_progress_updated is not None and request_type == RequestType.SEGMENT:
                self._on_progress_updated(elapsed_ms, num_bytes)
                state.got_progress = True

        def _headers_received(headers: dict[str, str]) -> None:
            if self._on_headers_received is not None:
                self._on_headers_received(headers, request, request_type)
            state.headers_received_called = True

        try:
            plugin_operation = registration.plugin(
                uri, request, request_type, _progress_updated, _headers_received
            )
        except Exception as exc:  # noqa: BLE001
            plugin_operation = CancelableOperation.failed(exc)
        plugin_operation.on_settled(lambda _succeeded: state.stop_timers())

        if registration.progress_support and parameters.connection_timeout:
            connection_timer.tick_after(parameters.connection_timeout / 1000.0)

        try:
            response = await _await_live(plugin_operation)
        except asyncio.CancelledError:
            state.stop_timers()
            raise
        except Exception as exc:  # noqa: BLE001
            state.stop_timers()
            error = exc
            if not isinstance(exc, NetworkError):
                # Uncategorized plugin failures are final.
                error = NetworkError(
                    Severity.CRITICAL,
                    Category.NETWORK,
                    ErrorCode.HTTP_ERROR,
                    uri,
                    exc,
                    request_type,
                )
            self._report_download_failed(request, error, state.timed_out)
            if state.timed_out and not self._destroyed:
                # Our own timer aborted the attempt; retry it like any timeout.
                raise NetworkError(
                    Severity.RECOVERABLE,
                    Category.NETWORK,
                    ErrorCode.TIMEOUT,
                    uri,
                    request_type,
                ) from error
            if error is exc:
                raise
            raise error from exc

        state.stop_timers()
        if response.time_ms is None:
            response.time_ms = (time.monotonic() - started) * 1000
        if not state.headers_received_called and self._on_headers_received is not None:
            # The plugin could not report headers early; report them now.
            self._on_headers_received(response.headers, request, request_type)
        return _ResponseAndGotProgress(response=response, got_progress=state.got_progress)

    def _report_download_failed(self, request: Request, error: BaseException, aborted: bool) -> None:
        if self._on_download_failed is None:
            return
        network_error = error if isinstance(error, NetworkError) else None
        http_status = network_error.http_status if network_error is not None else 0
        self._on_download_failed(request, network_error, http_status, aborted)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


async def _await_live(operation: CancelableOperation[Any]) -> Any:
    """Await an operation; if the awaiting task is cancelled, abort the operation first."""
    try:
        await asyncio.wait([operation.result])
    except asyncio.CancelledError:
        await operation.abort()
        raise
    return operation.result.result()
