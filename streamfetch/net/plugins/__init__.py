"""Built-in scheme plugins."""

from __future__ import annotations

from streamfetch.config import Settings
from streamfetch.models.request import PluginPriority
from streamfetch.net.plugins.data_uri_plugin import data_uri_plugin, parse_raw
from streamfetch.net.plugins.http_plugin import HttpPlugin
from streamfetch.net.plugins.http_utils import make_response
from streamfetch.net.scheme_registry import SchemeRegistry


def register_default_plugins(
    registry: SchemeRegistry,
    *,
    http_plugin: HttpPlugin | None = None,
    settings: Settings | None = None,
) -> HttpPlugin:
    """Register `data` and `http`/`https` plugins; return the HTTP plugin used.

    Without an explicit `http_plugin`, one is built from `settings` when given.
    """
    if http_plugin is None:
        http_plugin = HttpPlugin.from_settings(settings) if settings is not None else HttpPlugin()
    registry.register("data", data_uri_plugin, PluginPriority.APPLICATION)
    registry.register("http", http_plugin, PluginPriority.PREFERRED, progress_support=True)
    registry.register("https", http_plugin, PluginPriority.PREFERRED, progress_support=True)
    return http_plugin


__all__ = [
    "HttpPlugin",
    "data_uri_plugin",
    "make_response",
    "parse_raw",
    "register_default_plugins",
]
