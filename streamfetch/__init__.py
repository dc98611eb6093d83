"""streamfetch: resilient request layer for adaptive media clients."""

from streamfetch.errors import Category, ErrorCode, NetworkError, Severity, abort_error, is_abort_error
from streamfetch.models import PluginPriority, Request, RequestType, Response, RetryParameters, make_request
from streamfetch.net import Backoff, NetworkingEngine, PendingRequest, RetryEvent, SchemeRegistry
from streamfetch.utils import CancelableOperation, OperationManager

__all__ = [
    "Backoff",
    "CancelableOperation",
    "Category",
    "ErrorCode",
    "NetworkError",
    "NetworkingEngine",
    "OperationManager",
    "PendingRequest",
    "PluginPriority",
    "Request",
    "RequestType",
    "Response",
    "RetryEvent",
    "RetryParameters",
    "SchemeRegistry",
    "Severity",
    "abort_error",
    "is_abort_error",
    "make_request",
]
