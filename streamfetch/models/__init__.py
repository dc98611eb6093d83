"""Shared data models for streamfetch."""

from streamfetch.models.request import (
    PluginPriority,
    Request,
    RequestType,
    RetryParameters,
    make_request,
)
from streamfetch.models.response import Response

__all__ = [
    "PluginPriority",
    "Request",
    "RequestType",
    "Response",
    "RetryParameters",
    "make_request",
]
