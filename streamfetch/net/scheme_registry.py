"""Registry of transport plugins keyed by URI scheme."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from streamfetch.models.request import PluginPriority, Request, RequestType
from streamfetch.models.response import Response
from streamfetch.utils.operation import CancelableOperation

logger = logging.getLogger(__name__)

ProgressUpdated = Callable[[float, int, int], None]
HeadersReceived = Callable[[dict[str, str]], None]


class SchemePlugin(Protocol):
    """Transport contract for one URI scheme.

    `progress_updated(elapsed_ms, bytes_since_last, bytes_remaining)` may be
    called any number of times; `headers_received(headers)` at most once,
    before the body is fully read.
    """

    def __call__(
        self,
        uri: str,
        request: Request,
        request_type: RequestType,
        progress_updated: ProgressUpdated,
        headers_received: HeadersReceived,
    ) -> CancelableOperation[Response]: ...


@dataclass(frozen=True)
class SchemeRegistration:
    scheme: str
    plugin: SchemePlugin
    priority: int
    progress_support: bool = False


class SchemeRegistry:
    """One active plugin per scheme; the highest (or latest equal) priority wins."""

    def __init__(self) -> None:
        self._schemes: dict[str, SchemeRegistration] = {}

    def __contains__(self, scheme: str) -> bool:
        return scheme in self._schemes

    def register(
        self,
        scheme: str,
        plugin: SchemePlugin,
        priority: int | None = None,
        progress_support: bool = False,
    ) -> bool:
        """Register `plugin` for `scheme`. Return False if a higher-priority plugin is kept."""
        if priority is not None and priority <= 0:
            raise ValueError("explicit priority must be > 0")
        priority = priority or PluginPriority.APPLICATION

        existing = self._schemes.get(scheme)
        if existing is not None and priority < existing.priority:
            logger.debug(
                "Ignoring lower-priority plugin: scheme=%s priority=%s current=%s",
                scheme,
                int(priority),
                int(existing.priority),
            )
            return False

        self._schemes[scheme] = SchemeRegistration(
            scheme=scheme,
            plugin=plugin,
            priority=int(priority),
            progress_support=progress_support,
        )
        logger.debug("Registered scheme plugin: scheme=%s priority=%s", scheme, int(priority))
        return True

    def unregister(self, scheme: str) -> None:
        self._schemes.pop(scheme, None)

    def get(self, scheme: str) -> SchemeRegistration | None:
        return self._schemes.get(scheme)

    def clear(self) -> None:
        self._schemes.clear()


default_registry = SchemeRegistry()
