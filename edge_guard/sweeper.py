"""
Periodic eviction of stale in-memory state.

Expiry is enforced on lookup everywhere, so the sweeper only bounds memory:
it drops rate counters that have been stale for a few windows, expired
two-factor challenges and idle sessions.  Each store takes its own per-key
locks, so a sweep can run alongside request handling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Sweepable(Protocol):
    def sweep(self) -> int: ...


class StateSweeper:
    def __init__(self, targets: dict[str, Sweepable], *, interval: float, name: str = "state-sweeper") -> None:
        self._targets = targets
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info("%s started (every %ds)", self._name, self._interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("%s stopped", self._name)

    def sweep_once(self) -> dict[str, int]:
        """Run every target's sweep; a failing target does not stop the others."""
        evicted: dict[str, int] = {}
        for label, target in self._targets.items():
            try:
                evicted[label] = target.sweep()
            except Exception:
                logger.exception("%s: sweeping %s failed, will retry next tick", self._name, label)
        return evicted

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            evicted = self.sweep_once()
            total = sum(evicted.values())
            if total:
                logger.info("%s evicted %d entries: %s", self._name, total, evicted)

