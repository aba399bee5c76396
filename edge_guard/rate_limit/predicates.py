"""
Skip predicates: requests matching any predicate on a policy's list bypass
the limiter entirely and leave its counters untouched.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from starlette.requests import Request

SkipPredicate = Callable[[Request], bool]

LOOPBACK_ADDRESSES = frozenset({"127.0.0.1", "::1", "localhost"})
HEALTH_CHECK_PATHS = frozenset({"/api/health", "/health"})
STATIC_PREFIXES = ("/_next/", "/static/")
_STATIC_SUFFIX = re.compile(r"\.(css|js|map|png|jpe?g|gif|svg|ico|webp|woff2?)$", re.IGNORECASE)


def is_health_check(request: Request) -> bool:
    return request.url.path in HEALTH_CHECK_PATHS


def is_static_asset(request: Request) -> bool:
    path = request.url.path
    return path.startswith(STATIC_PREFIXES) or bool(_STATIC_SUFFIX.search(path))


def is_preflight(request: Request) -> bool:
    """CORS preflight: OPTIONS carrying Origin and Access-Control-Request-Method."""
    return (
        request.method == "OPTIONS"
        and "origin" in request.headers
        and "access-control-request-method" in request.headers
    )


def development_only(environment: str) -> SkipPredicate:
    """Loopback callers are exempt while running in development.

    Only the transport peer counts; forwarded headers are caller-controlled.
    """

    def is_local_development(request: Request) -> bool:
        if environment != "development" or request.client is None:
            return False
        return request.client.host in LOOPBACK_ADDRESSES

    return is_local_development


def never(request: Request) -> bool:
    return False


def any_of(*predicates: SkipPredicate) -> SkipPredicate:
    def combined(request: Request) -> bool:
        return any(predicate(request) for predicate in predicates)

    return combined


def build_skip_predicates(
    environment: str,
    *,
    is_admin: SkipPredicate | None = None,
) -> dict[str, SkipPredicate]:
    """Registry of predicate identifiers referenced by policies.

    ``is_admin`` must authenticate the caller itself; without one the admin
    bypass never matches.
    """
    return {
        "development": development_only(environment),
        "health_check": is_health_check,
        "static_asset": is_static_asset,
        "preflight": is_preflight,
        "admin": is_admin or never,
    }
