"""
Counter storage for the fixed-window rate limiter.

The limiter only talks to a ``CounterStore``, so an in-process map can be
swapped for a shared backing store without touching policy logic.  The
in-memory implementation serialises updates per key through a striped lock
table: requests for the same key never interleave, unrelated keys almost
never share a stripe.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Protocol

from edge_guard.locks import StripedLock


@dataclass
class RateCounter:
    count: int
    window_start: float
    window_seconds: float

    def expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_seconds

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_seconds


class CounterStore(Protocol):
    def increment_with_expiry(self, key: str, window_seconds: float, now: float) -> RateCounter: ...

    def decrement(self, key: str, window_start: float) -> None: ...

    def get(self, key: str) -> RateCounter | None: ...

    def delete(self, key: str) -> None: ...

    def sweep(self, now: float, grace: float) -> int: ...

    def snapshot(self) -> dict[str, RateCounter]: ...


class MemoryCounterStore:
    """Process-local counters keyed by ``"<policy>:<fingerprint>"``."""

    def __init__(self, stripes: int = 64) -> None:
        self._counters: dict[str, RateCounter] = {}
        self._locks = StripedLock(stripes)

    def increment_with_expiry(self, key: str, window_seconds: float, now: float) -> RateCounter:
        """Count one request, opening a fresh window if the current one elapsed.

        Returns a snapshot taken under the key's lock.
        """
        with self._locks.for_key(key):
            counter = self._counters.get(key)
            if counter is None or counter.expired(now):
                counter = RateCounter(count=0, window_start=now, window_seconds=window_seconds)
                self._counters[key] = counter
            counter.count += 1
            return replace(counter)

    def decrement(self, key: str, window_start: float) -> None:
        """Undo one request, but only within the window it was counted in."""
        with self._locks.for_key(key):
            counter = self._counters.get(key)
            if counter is not None and counter.window_start == window_start and counter.count > 0:
                counter.count -= 1

    def get(self, key: str) -> RateCounter | None:
        with self._locks.for_key(key):
            counter = self._counters.get(key)
            return replace(counter) if counter is not None else None

    def delete(self, key: str) -> None:
        with self._locks.for_key(key):
            self._counters.pop(key, None)

    def sweep(self, now: float, grace: float) -> int:
        """Evict counters idle for more than ``grace`` windows. Returns the count evicted."""
        evicted = 0
        for key in list(self._counters):
            with self._locks.for_key(key):
                counter = self._counters.get(key)
                if counter is None:
                    continue
                if now - counter.window_start >= counter.window_seconds * grace:
                    del self._counters[key]
                    evicted += 1
        return evicted

    def snapshot(self) -> dict[str, RateCounter]:
        return {key: replace(counter) for key, counter in list(self._counters.items())}

    def __len__(self) -> int:
        return len(self._counters)
