"""Scheme plugin for http and https URIs backed by httpx."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from streamfetch.config import Settings
from streamfetch.errors import Category, ErrorCode, NetworkError, Severity
from streamfetch.models.request import Request, RequestType
from streamfetch.models.response import Response
from streamfetch.net.plugins.http_utils import make_response
from streamfetch.net.scheme_registry import HeadersReceived, ProgressUpdated
from streamfetch.utils.operation import CancelableOperation

logger = logging.getLogger(__name__)


class HttpPlugin:
    """Stream a response body, reporting headers early and progress per chunk.

    The request's `retry_parameters.timeout` bounds the whole transfer.
    Aborting the returned operation cancels the transfer.
    """

    def __init__(
        self,
        session: httpx.AsyncClient | None = None,
        *,
        progress_interval_ms: float = 100,
        user_agent: str = "streamfetch/0.1",
        follow_redirects: bool = True,
    ):
        self._session = session
        self.progress_interval_ms = progress_interval_ms
        self.user_agent = user_agent
        self.follow_redirects = follow_redirects

    @classmethod
    def from_settings(cls, settings: Settings, session: httpx.AsyncClient | None = None) -> "HttpPlugin":
        """Build a plugin from the `SF_HTTP_*` settings."""
        return cls(
            session,
            progress_interval_ms=settings.http_progress_interval_ms,
            user_agent=settings.http_user_agent,
            follow_redirects=settings.http_follow_redirects,
        )

    @property
    def session(self) -> httpx.AsyncClient:
        if self._session is None:
            self._session = httpx.AsyncClient(
                follow_redirects=self.follow_redirects,
                headers={"User-Agent": self.user_agent, "Accept": "*/*"},
                timeout=None,
            )
        return self._session

    def __call__(
        self,
        uri: str,
        request: Request,
        request_type: RequestType,
        progress_updated: ProgressUpdated,
        headers_received: HeadersReceived,
    ) -> CancelableOperation[Response]:
        timeout_ms = request.retry_parameters.timeout if request.retry_parameters else 0
        return CancelableOperation.from_coroutine(
            self._fetch(uri, request, request_type, progress_updated, headers_received, timeout_ms)
        )

    async def close(self) -> None:
        """Close underlying HTTP session."""
        if self._session is not None:
            await self._session.aclose()
            self._session = None

    async def _fetch(
        self,
        uri: str,
        request: Request,
        request_type: RequestType,
        progress_updated: ProgressUpdated,
        headers_received: HeadersReceived,
        timeout_ms: float,
    ) -> Response:
        chunks: list[bytes] = []
        loaded = 0
        last_loaded = 0
        last_time = time.monotonic()

        try:
            async with asyncio.timeout(timeout_ms / 1000.0 if timeout_ms else None):
                async with self.session.stream(
                    request.method,
                    uri,
                    headers=request.headers,
                    content=request.body,
                ) as response:
                    headers = _headers_to_dict(response.headers)
                    headers_received(headers)
                    content_length = _content_length(response.headers)

                    async for chunk in response.aiter_bytes():
                        chunks.append(chunk)
                        loaded += len(chunk)
                        if request.stream_data_callback is not None:
                            await request.stream_data_callback(chunk)

                        now = time.monotonic()
                        if (now - last_time) * 1000 > self.progress_interval_ms:
                            progress_updated((now - last_time) * 1000, loaded - last_loaded, max(0, content_length - loaded))
                            last_loaded = loaded
                            last_time = now

                    # Always report the tail of the body.
                    now = time.monotonic()
                    progress_updated((now - last_time) * 1000, loaded - last_loaded, 0)
                    status = response.status_code
                    response_url = str(response.url)
        except (TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("HTTP request timed out: uri=%s timeout_ms=%s", uri, timeout_ms)
            raise NetworkError(
                Severity.RECOVERABLE,
                Category.NETWORK,
                ErrorCode.TIMEOUT,
                uri,
                request_type,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP request failed: uri=%s error=%s", uri, exc)
            raise NetworkError(
                Severity.RECOVERABLE,
                Category.NETWORK,
                ErrorCode.HTTP_ERROR,
                uri,
                exc,
                request_type,
            ) from exc

        return make_response(headers, b"".join(chunks), status, uri, response_url, request_type)


def _headers_to_dict(headers: httpx.Headers) -> dict[str, str]:
    return {key.strip().lower(): value for key, value in headers.items()}


def _content_length(headers: httpx.Headers) -> int:
    raw = headers.get("content-length")
    try:
        return int(raw) if raw else 0
    except ValueError:
        return 0
