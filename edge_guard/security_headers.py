"""
Per-response security headers and Content-Security-Policy.

Each request gets a fresh nonce; the CSP whitelist embeds it in
``script-src`` and the same value is exposed to templates via
``request.state.csp_nonce`` and the ``X-CSP-Nonce`` header.  Outside
production the policy is sent report-only so violations are observed
without breaking pages.
"""

from __future__ import annotations

import base64
import logging
import secrets
from collections.abc import Iterable
from dataclasses import dataclass, field

from starlette.requests import Request

logger = logging.getLogger(__name__)

# 16 bytes = 128 bits of entropy
NONCE_BYTES = 16

CSP_HEADER = "Content-Security-Policy"
CSP_REPORT_ONLY_HEADER = "Content-Security-Policy-Report-Only"

STATIC_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": (
        "camera=(), microphone=(), geolocation=(), payment=(), usb=(), interest-cohort=()"
    ),
    "Cross-Origin-Embedder-Policy": "require-corp",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
    "X-Permitted-Cross-Domain-Policies": "none",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization, X-Requested-With, X-CSRF-Token"


def generate_nonce() -> str:
    return base64.b64encode(secrets.token_bytes(NONCE_BYTES)).decode("ascii")


@dataclass
class SecurityHeaderSet:
    """Request-scoped header bundle; built by HeaderComposer, never stored."""

    nonce: str | None
    directives: dict[str, list[str]] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    report_only: bool = False

    @property
    def policy(self) -> str:
        parts = []
        for name, sources in self.directives.items():
            parts.append(f"{name} {' '.join(sources)}" if sources else name)
        return "; ".join(parts)

    def as_headers(self) -> dict[str, str]:
        result = dict(self.headers)
        if self.directives:
            result[CSP_REPORT_ONLY_HEADER if self.report_only else CSP_HEADER] = self.policy
        if self.nonce:
            result["X-CSP-Nonce"] = self.nonce
        return result


class HeaderComposer:
    def __init__(
        self,
        *,
        production: bool,
        cors_origins: Iterable[str] = (),
        cors_max_age: int = 86400,
        extra_script_src: Iterable[str] = (),
        extra_style_src: Iterable[str] = (),
        report_uri: str | None = None,
        api_prefix: str = "/api/",
        trust_proxy: bool = False,
    ) -> None:
        self.production = production
        self.cors_origins = frozenset(cors_origins)
        self.cors_max_age = cors_max_age
        self.extra_script_src = list(extra_script_src)
        self.extra_style_src = list(extra_style_src)
        self.report_uri = report_uri
        self.api_prefix = api_prefix
        self.trust_proxy = trust_proxy

    def compose(self, request: Request) -> SecurityHeaderSet:
        """Build the header set for one response.

        Never raises: if the nonce cannot be generated the static headers are
        still returned, just without a CSP.
        """
        headers = dict(STATIC_HEADERS)
        if self.is_secure(request):
            headers["Strict-Transport-Security"] = HSTS_VALUE
        headers.update(self.cors_headers(request))

        try:
            nonce = generate_nonce()
        except Exception:
            logger.exception("CSP nonce generation failed; sending headers without CSP")
            return SecurityHeaderSet(nonce=None, headers=headers)

        return SecurityHeaderSet(
            nonce=nonce,
            directives=self.directives(nonce),
            headers=headers,
            report_only=not self.production,
        )

    def directives(self, nonce: str) -> dict[str, list[str]]:
        directives = {
            "default-src": ["'self'"],
            "script-src": ["'self'", f"'nonce-{nonce}'", *self.extra_script_src],
            "style-src": ["'self'", *self.extra_style_src],
            "img-src": ["'self'", "data:", "blob:"],
            "font-src": ["'self'"],
            "connect-src": ["'self'"],
            "object-src": ["'none'"],
            "frame-ancestors": ["'none'"],
            "base-uri": ["'self'"],
            "form-action": ["'self'"],
        }
        if self.production:
            directives["upgrade-insecure-requests"] = []
        if self.report_uri:
            directives["report-uri"] = [self.report_uri]
        return directives

    def is_secure(self, request: Request) -> bool:
        if request.url.scheme == "https":
            return True
        return self.trust_proxy and request.headers.get("x-forwarded-proto", "").lower() == "https"

    def is_api(self, request: Request) -> bool:
        return request.url.path.startswith(self.api_prefix)

    def cors_headers(self, request: Request) -> dict[str, str]:
        """CORS headers for API routes, only for exactly allow-listed origins."""
        if not self.is_api(request):
            return {}
        origin = request.headers.get("origin")
        if not origin or origin not in self.cors_origins:
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
            "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
            "Access-Control-Max-Age": str(self.cors_max_age),
            "Vary": "Origin",
        }
