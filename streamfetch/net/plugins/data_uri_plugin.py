"""Scheme plugin for `data:` URIs (RFC 2397)."""

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import unquote, unquote_to_bytes

from streamfetch.errors import Category, ErrorCode, NetworkError, Severity
from streamfetch.models.request import Request, RequestType
from streamfetch.models.response import Response
from streamfetch.net.scheme_registry import HeadersReceived, ProgressUpdated
from streamfetch.utils.operation import CancelableOperation

logger = logging.getLogger(__name__)


def data_uri_plugin(
    uri: str,
    request: Request,
    request_type: RequestType,
    progress_updated: ProgressUpdated,
    headers_received: HeadersReceived,
) -> CancelableOperation[Response]:
    del request, request_type, progress_updated, headers_received
    try:
        data, content_type = parse_raw(uri)
    except NetworkError as exc:
        return CancelableOperation.failed(exc)
    response = Response(
        uri=uri,
        original_uri=uri,
        data=data,
        headers={"content-type": content_type},
    )
    return CancelableOperation.completed(response)


def parse_raw(uri: str) -> tuple[bytes, str]:
    """Return `(data, content_type)` decoded from a data URI."""
    scheme, separator, path = uri.partition(":")
    if not separator or scheme.lower() != "data":
        logger.error("Bad data URI, failed to parse scheme: %s", uri[:64])
        raise _malformed(uri)

    # The MIME type and encoding are required but may be empty.
    info, separator, data_text = path.partition(",")
    if not separator:
        logger.error("Bad data URI, failed to extract encoding and MIME type: %s", uri[:64])
        raise _malformed(uri)

    # MIME type comes first; a base64 marker, if present, comes last.
    type_info = info.split(";")
    content_type = type_info[0]
    base64_encoded = len(type_info) > 1 and type_info[-1] == "base64"

    if not base64_encoded:
        return unquote_to_bytes(data_text), content_type

    try:
        return base64.b64decode(unquote(data_text), validate=True), content_type
    except (binascii.Error, ValueError) as exc:
        logger.error("Bad data URI, invalid base64 payload: %s", exc)
        raise _malformed(uri) from exc


def _malformed(uri: str) -> NetworkError:
    return NetworkError(Severity.CRITICAL, Category.NETWORK, ErrorCode.MALFORMED_DATA_URI, uri)
