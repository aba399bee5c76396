"""Striped lock table for per-key mutual exclusion."""

from __future__ import annotations

import threading


class StripedLock:
    """Fixed table of locks; a key always maps to the same stripe.

    Updates to one key are serialised, unrelated keys only contend when
    they hash to the same stripe.
    """

    def __init__(self, stripes: int = 64) -> None:
        self._locks = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: object) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]
