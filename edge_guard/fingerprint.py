"""
Caller fingerprints for rate limiting.

A fingerprint is a short digest of transport metadata (address, user-agent,
accept-language). It only exists to key counters, so the raw values never
leave this module.
"""

from __future__ import annotations

import base64
import hashlib

from starlette.requests import Request

UNKNOWN = "unknown"

# Length of the encoded digest; 16 chars of urlsafe base64 = 96 bits.
_FINGERPRINT_LENGTH = 16


def client_address(request: Request, *, trust_proxy: bool = False) -> str:
    """Best-effort caller address, honouring proxy headers when trusted."""
    if trust_proxy:
        headers = request.headers
        for name in ("cf-connecting-ip", "x-real-ip"):
            value = headers.get(name, "").strip()
            if value:
                return value
        forwarded = headers.get("x-forwarded-for", "")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def derive(address: str | None, user_agent: str | None, language: str | None) -> str:
    """Hash the three transport attributes into a stable map key."""
    material = "|".join(value or UNKNOWN for value in (address, user_agent, language))
    digest = hashlib.sha256(material.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")[:_FINGERPRINT_LENGTH]


def fingerprint(request: Request, *, trust_proxy: bool = False) -> str:
    return derive(
        client_address(request, trust_proxy=trust_proxy),
        request.headers.get("user-agent"),
        request.headers.get("accept-language"),
    )
