"""Networking layer: backoff, scheme plugins, and the networking engine."""

from streamfetch.net.backoff import Backoff, fuzz
from streamfetch.net.networking_engine import (
    BytesRemaining,
    NetworkingEngine,
    PendingRequest,
    RetryEvent,
)
from streamfetch.net.plugins import HttpPlugin, register_default_plugins
from streamfetch.net.scheme_registry import SchemeRegistration, SchemeRegistry, default_registry

default_http_plugin = register_default_plugins(default_registry)

__all__ = [
    "Backoff",
    "BytesRemaining",
    "HttpPlugin",
    "NetworkingEngine",
    "PendingRequest",
    "RetryEvent",
    "SchemeRegistration",
    "SchemeRegistry",
    "default_http_plugin",
    "default_registry",
    "fuzz",
    "register_default_plugins",
]
