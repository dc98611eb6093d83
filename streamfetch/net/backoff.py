"""Fuzzed exponential backoff for retrying network requests."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

from streamfetch.errors import Category, ErrorCode, NetworkError, Severity
from streamfetch.models.request import RetryParameters
from streamfetch.utils.operation import CancelableOperation

Sleep = Callable[[float], Awaitable[None]]


class Backoff:
    """Delay and attempt-count state for one logical retry sequence.

    In manual mode `attempt()` is called before every try: the first call
    resolves immediately, later ones wait a fuzzed, exponentially growing
    delay, and once `max_attempts` are used further calls fail with
    ATTEMPTS_EXHAUSTED.

    In auto-reset mode the first attempt is implied, so the counter starts at
    one; on exhaustion the state rewinds instead of failing. This suits
    long-lived consumers that retry forever with periodic resets.
    """

    def __init__(
        self,
        parameters: RetryParameters,
        *,
        auto_reset: bool = False,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.max_attempts = parameters.max_attempts
        self.base_delay = parameters.base_delay
        self.fuzz_factor = parameters.fuzz_factor
        self.backoff_factor = parameters.backoff_factor
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if auto_reset and self.max_attempts < 2:
            raise ValueError("max_attempts must be >= 2 when auto_reset is enabled")

        self.auto_reset = auto_reset
        self.num_attempts = 1 if auto_reset else 0
        self.next_unfuzzed_delay = self.base_delay
        self._rng = rng or random.Random()
        self._sleep = sleep

    def attempt(self) -> CancelableOperation[None]:
        """Return an operation that completes when the next try may start.

        Aborting it cancels a pending delay. The attempt is counted either way.
        """
        if self.num_attempts >= self.max_attempts:
            if not self.auto_reset:
                return CancelableOperation.failed(
                    NetworkError(Severity.CRITICAL, Category.PLAYER, ErrorCode.ATTEMPTS_EXHAUSTED)
                )
            self._reset()

        current_attempt = self.num_attempts
        self.num_attempts += 1
        if current_attempt == 0:
            return CancelableOperation.completed(None)

        # Fuzz so that many clients failing together do not retry in lockstep.
        delay_ms = fuzz(self.next_unfuzzed_delay, self.fuzz_factor, self._rng)
        return CancelableOperation.from_coroutine(self._delay(delay_ms))

    async def _delay(self, delay_ms: float) -> None:
        await self._sleep(delay_ms / 1000.0)
        self.next_unfuzzed_delay *= self.backoff_factor

    def _reset(self) -> None:
        self.num_attempts = 1
        self.next_unfuzzed_delay = self.base_delay

    @staticmethod
    def default_retry_parameters() -> RetryParameters:
        """Return a fresh copy of the default retry parameters."""
        return RetryParameters()


def fuzz(value: float, fuzz_factor: float, rng: random.Random | None = None) -> float:
    """Return `value` scaled by a random factor in `[1 - fuzz_factor, 1 + fuzz_factor]`."""
    neg_to_pos_one = (rng or random).random() * 2.0 - 1.0
    return value * (1.0 + neg_to_pos_one * fuzz_factor)
