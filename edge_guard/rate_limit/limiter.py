"""
Fixed-window rate limiter engine.

One counter per (policy, fingerprint).  Skip predicates run before any
counting; a skipped request is allowed and leaves no trace.  Otherwise the
counter is incremented atomically and the request is throttled once the
count exceeds the policy ceiling for the current window.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Union

from starlette.requests import Request

from edge_guard.rate_limit.policies import RateLimitPolicy
from edge_guard.rate_limit.predicates import SkipPredicate
from edge_guard.rate_limit.store import CounterStore, MemoryCounterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allowed:
    limit: int | None = None
    remaining: int | None = None
    reset_at: float | None = None
    window_start: float | None = None
    skipped: bool = False


@dataclass(frozen=True)
class Throttled:
    limit: int
    retry_after: float
    reset_at: float
    message: str = ""

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds for the Retry-After header, never less than 1."""
        return max(1, math.ceil(self.retry_after))


Decision = Union[Allowed, Throttled]


class RateLimiter:
    """Owns the counter store and the policy table for one application."""

    def __init__(
        self,
        policies: Iterable[RateLimitPolicy],
        *,
        predicates: Mapping[str, SkipPredicate] | None = None,
        store: CounterStore | None = None,
        clock: Callable[[], float] = time.time,
        sweep_grace: float = 2.0,
    ) -> None:
        self._policies = {policy.name: policy for policy in policies}
        self._predicates = dict(predicates or {})
        self._store = store if store is not None else MemoryCounterStore()
        self._clock = clock
        self._sweep_grace = sweep_grace
        self._throttled: Counter[str] = Counter()
        self._stats_lock = threading.Lock()
        self.enabled = True

        for policy in self._policies.values():
            unknown = [name for name in policy.skip_predicates if name not in self._predicates]
            if unknown:
                raise ValueError(f"Policy {policy.name!r} references unknown skip predicates: {unknown}")

    # ── Policy table ───────────────────────────────────────────────────

    @property
    def policies(self) -> dict[str, RateLimitPolicy]:
        return dict(self._policies)

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self._policies[name]
        except KeyError:
            raise KeyError(f"Unknown rate limit policy: {name}") from None

    # ── Evaluation ─────────────────────────────────────────────────────

    def should_skip(self, policy: RateLimitPolicy, request: Request | None) -> bool:
        if request is None:
            return False
        return any(self._predicates[name](request) for name in policy.skip_predicates)

    def check(
        self,
        policy: RateLimitPolicy,
        fingerprint: str,
        request: Request | None = None,
    ) -> Decision:
        if not self.enabled or self.should_skip(policy, request):
            return Allowed(skipped=True)

        now = self._clock()
        counter = self._store.increment_with_expiry(
            _key(policy, fingerprint), policy.window_seconds, now,
        )

        if counter.count > policy.max_requests:
            with self._stats_lock:
                self._throttled[policy.name] += 1
            logger.warning(
                "Rate limit exceeded: policy=%s fingerprint=%s count=%d limit=%d",
                policy.name, fingerprint, counter.count, policy.max_requests,
            )
            return Throttled(
                limit=policy.max_requests,
                retry_after=counter.reset_at - now,
                reset_at=counter.reset_at,
                message=policy.message,
            )

        return Allowed(
            limit=policy.max_requests,
            remaining=policy.max_requests - counter.count,
            reset_at=counter.reset_at,
            window_start=counter.window_start,
        )

    def release(self, policy: RateLimitPolicy, fingerprint: str, decision: Decision) -> None:
        """Refund a counted request (success-skip policies)."""
        if isinstance(decision, Allowed) and not decision.skipped and decision.window_start is not None:
            self._store.decrement(_key(policy, fingerprint), decision.window_start)

    def reset(self, policy: RateLimitPolicy, fingerprint: str) -> None:
        self._store.delete(_key(policy, fingerprint))

    # ── Maintenance ────────────────────────────────────────────────────

    def sweep(self) -> int:
        evicted = self._store.sweep(self._clock(), self._sweep_grace)
        if evicted:
            logger.info("Evicted %d stale rate counters", evicted)
        return evicted

    def stats(self, top: int = 10) -> dict:
        """Aggregate view for monitoring: live keys, request totals, throttles."""
        now = self._clock()
        requests: Counter[str] = Counter()
        per_fingerprint: Counter[str] = Counter()
        tracked = 0
        for key, counter in self._store.snapshot().items():
            if counter.expired(now):
                continue
            tracked += 1
            policy_name, _, fingerprint = key.partition(":")
            requests[policy_name] += counter.count
            per_fingerprint[fingerprint] += counter.count
        with self._stats_lock:
            throttled = dict(self._throttled)
        return {
            "tracked_keys": tracked,
            "policies": {
                name: {
                    "limit": policy.max_requests,
                    "window_seconds": policy.window_seconds,
                    "requests": requests.get(name, 0),
                    "throttled": throttled.get(name, 0),
                }
                for name, policy in self._policies.items()
            },
            "top_fingerprints": [
                {"fingerprint": fp, "requests": count}
                for fp, count in per_fingerprint.most_common(top)
            ],
        }


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """X-RateLimit-* (and Retry-After on throttle) for the given decision."""
    if isinstance(decision, Throttled):
        return {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
            "Retry-After": str(decision.retry_after_seconds),
        }
    if decision.skipped:
        return {}
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
    }


def _key(policy: RateLimitPolicy, fingerprint: str) -> str:
    return f"{policy.name}:{fingerprint}"
