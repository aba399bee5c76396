"""
Rate limit policy table.

Four named tiers, each built from a rate string in the ``limits`` notation:

  • api       – 100 / 15 min (general API traffic)
  • auth      – 5 / 15 min   (login and two-factor endpoints)
  • contact   – 3 / hour     (contact form submissions)
  • telemetry – 1000 / min   (performance beacons, CSP reports)

Policies are built once at startup and never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from limits import parse

from edge_guard import config

API = "api"
AUTH = "auth"
CONTACT = "contact"
TELEMETRY = "telemetry"

# Path prefix → policy name. First match wins; paths outside /api/ are not limited.
ROUTE_CLASSES: tuple[tuple[str, str], ...] = (
    ("/api/auth/", AUTH),
    ("/api/contact", CONTACT),
    ("/api/telemetry", TELEMETRY),
    ("/api/performance", TELEMETRY),
    ("/api/security/csp-report", TELEMETRY),
    ("/api/", API),
)


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: float
    max_requests: int
    skip_predicates: tuple[str, ...] = ()
    skip_successful: bool = False
    message: str = "Too many requests, please try again later."

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError(f"Policy {self.name!r}: window must be positive")
        if self.max_requests < 1:
            raise ValueError(f"Policy {self.name!r}: max_requests must be >= 1")

    @property
    def window_millis(self) -> int:
        return int(self.window_seconds * 1000)

    def describe(self) -> str:
        """Human-readable limit, e.g. ``5 per 900 seconds``."""
        return f"{self.max_requests} per {self.window_seconds:g} seconds"


def parse_policy(
    name: str,
    rate: str,
    *,
    skip_predicates: Iterable[str] = (),
    skip_successful: bool = False,
    message: str | None = None,
) -> RateLimitPolicy:
    """Build a policy from a rate string such as ``"5/15 minutes"``."""
    item = parse(rate)
    policy = RateLimitPolicy(
        name=name,
        window_seconds=float(item.get_expiry()),
        max_requests=item.amount,
        skip_predicates=tuple(skip_predicates),
        skip_successful=skip_successful,
    )
    return replace(policy, message=message) if message else policy


def default_policies() -> list[RateLimitPolicy]:
    """The policy table configured for this process."""
    return [
        parse_policy(
            API,
            config.RATE_LIMIT_API,
            skip_predicates=("development", "health_check", "static_asset", "preflight", "admin"),
            message="Too many API requests, please try again later.",
        ),
        parse_policy(
            AUTH,
            config.RATE_LIMIT_AUTH,
            skip_predicates=("development", "preflight"),
            skip_successful=config.RATE_LIMIT_AUTH_SKIP_SUCCESSFUL,
            message="Too many authentication attempts, please try again later.",
        ),
        parse_policy(
            CONTACT,
            config.RATE_LIMIT_CONTACT,
            skip_predicates=("development", "preflight"),
            message="Too many contact form submissions, please try again later.",
        ),
        parse_policy(
            TELEMETRY,
            config.RATE_LIMIT_TELEMETRY,
            skip_predicates=("development", "preflight", "admin"),
            message="Too many performance monitoring requests.",
        ),
    ]


def policy_name_for_path(path: str) -> str | None:
    for prefix, name in ROUTE_CLASSES:
        if path.startswith(prefix):
            return name
    return None
