"""Helpers shared by HTTP scheme plugins."""

from __future__ import annotations

import logging

from streamfetch.errors import Category, ErrorCode, NetworkError, Severity
from streamfetch.models.request import RequestType
from streamfetch.models.response import Response

logger = logging.getLogger(__name__)

FROM_CACHE_HEADER = "x-from-cache"


def make_response(
    headers: dict[str, str],
    data: bytes,
    status: int,
    uri: str,
    response_url: str | None,
    request_type: RequestType,
) -> Response:
    """Build a Response for a 2xx status, or raise BAD_HTTP_STATUS.

    202 is treated as a failure since the body is not ready yet. 401 and 403
    are critical; every other failing status is recoverable.
    """
    if 200 <= status <= 299 and status != 202:
        return Response(
            uri=response_url or uri,
            original_uri=uri,
            data=data,
            status=status,
            headers=headers,
            from_cache=bool(headers.get(FROM_CACHE_HEADER)),
        )

    response_text = data.decode("utf-8", errors="replace") if data else None
    logger.debug("HTTP error text: status=%s uri=%s text=%s", status, uri, response_text)
    severity = Severity.CRITICAL if status in (401, 403) else Severity.RECOVERABLE
    raise NetworkError(
        severity,
        Category.NETWORK,
        ErrorCode.BAD_HTTP_STATUS,
        uri,
        status,
        response_text,
        headers,
        request_type,
    )
