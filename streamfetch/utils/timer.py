"""Restartable one-shot timer on the running event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable


class Timer:
    """Run `callback` once after a delay; re-arming replaces any pending tick."""

    def __init__(self, callback: Callable[[], None]):
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def tick_after(self, seconds: float) -> "Timer":
        self.stop()
        self._handle = asyncio.get_running_loop().call_later(seconds, self._fire)
        return self

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()
