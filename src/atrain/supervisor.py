"""Polling loop around Atrain.tick with exponential backoff.

Atrain never retries on its own: a failed tick simply raises. The
Supervisor is the outer loop that keeps calling tick(), backing off after
failures and resetting once a tick succeeds again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from atrain.core.errors import AtrainError

if TYPE_CHECKING:
    from atrain.orchestrator import Atrain

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 300.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


class Supervisor:
    """Runs Atrain.tick() until stopped."""

    def __init__(
        self,
        atrain: Atrain,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        """Initialize the supervisor.

        Args:
            atrain: Orchestrator to drive.
            initial_backoff: Delay after the first failed tick.
            max_backoff: Upper bound for the delay between failed ticks.
            backoff_multiplier: Factor applied after each consecutive failure.
            sleep: Coroutine function used for backoff delays.
        """
        self._atrain = atrain
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._backoff_multiplier = backoff_multiplier
        self._sleep = sleep
        self._running = False
        self._consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def stop(self) -> None:
        """Stop after the current iteration."""
        self._running = False

    async def run(self, max_ticks: int | None = None) -> None:
        """Call tick() repeatedly.

        AtrainError failures are logged and followed by an exponential
        backoff delay. Any other exception ends the loop.

        Args:
            max_ticks: Stop after this many tick attempts (None: forever).
        """
        self._running = True
        backoff = self._initial_backoff
        attempts = 0

        logger.info("Polling %d drives", len(self._atrain.drives))
        try:
            while self._running and (max_ticks is None or attempts < max_ticks):
                attempts += 1
                try:
                    await self._atrain.tick()
                except AtrainError as e:
                    self._consecutive_failures += 1
                    logger.warning(
                        "Tick failed (%d in a row): %s. Retrying in %.1fs",
                        self._consecutive_failures,
                        e,
                        backoff,
                    )
                    await self._sleep(backoff)
                    backoff = min(backoff * self._backoff_multiplier, self._max_backoff)
                    continue

                if self._consecutive_failures:
                    logger.info("Tick succeeded after %d failures", self._consecutive_failures)
                self._consecutive_failures = 0
                backoff = self._initial_backoff
        finally:
            self._running = False
