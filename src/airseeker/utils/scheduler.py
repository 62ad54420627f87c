"""
Interval loop utility for Airseeker's long-running tasks.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from ..state import StateStore


class LoopStatus(Enum):
    """Lifecycle of an :class:`IntervalLoop`."""

    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class IntervalLoop:
    """
    Runs an iteration back-to-back with a fixed period until the stop flag is set.

    Each iteration is measured and followed by a sleep of
    ``max(0, interval - elapsed)``, so slow iterations run back to back and
    fast ones are evenly spaced. The stop flag is checked only at iteration
    boundaries: an in-flight iteration always runs to completion, while a
    pending sleep is cut short.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        iteration: Callable[[], Awaitable[Any]],
        store: StateStore
    ):
        """
        Initialize the interval loop.

        Args:
            name: Label used in log lines
            interval: Period in seconds
            iteration: Coroutine factory run once per period
            store: Runtime state holding the stop flag
        """
        self.name = name
        self.interval = interval
        self.iteration = iteration
        self.store = store

        self._running = False
        self._in_flight = False
        self.iterations = 0

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def status(self) -> LoopStatus:
        if not self._running:
            return LoopStatus.STOPPED if self.iterations else LoopStatus.IDLE
        if self.store.stopped:
            return LoopStatus.DRAINING
        return LoopStatus.RUNNING

    async def _wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the stop signal arrives first."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self.store.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass  # Full period elapsed

    async def run(self) -> None:
        """Run iterations until the stop flag is observed."""
        if self._running:
            self.logger.warning(f"Loop {self.name} already running")
            return

        self._running = True
        self.logger.debug(f"Starting loop {self.name} every {self.interval} seconds")
        try:
            while not self.store.stopped:
                start = time.monotonic()
                self._in_flight = True
                try:
                    await self.iteration()
                except Exception as e:
                    self.logger.error(f"Unexpected error in loop {self.name}: {e}", exc_info=True)
                finally:
                    self._in_flight = False
                    self.iterations += 1

                elapsed = time.monotonic() - start
                await self._wait(max(0.0, self.interval - elapsed))
        finally:
            self._running = False
            self.logger.debug(f"Loop {self.name} stopped: {self.get_status()}")

    def get_status(self) -> Dict[str, Any]:
        """
        Get current status of the loop.

        Returns:
            Dictionary with status information
        """
        return {
            "name": self.name,
            "status": self.status.value,
            "interval": self.interval,
            "iterations": self.iterations,
            "in_flight": self._in_flight,
        }
