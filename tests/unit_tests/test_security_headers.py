"""Tests for the security header and CSP composer."""

import base64

import pytest

from edge_guard import security_headers
from edge_guard.security_headers import (
    CSP_HEADER,
    CSP_REPORT_ONLY_HEADER,
    HSTS_VALUE,
    HeaderComposer,
    generate_nonce,
)
from tests.mocks.models import ALLOWED_ORIGIN, FOREIGN_ORIGIN
from tests.mocks.requests import make_request


@pytest.fixture()
def production() -> HeaderComposer:
    return HeaderComposer(
        production=True,
        cors_origins=[ALLOWED_ORIGIN],
        extra_script_src=["https://js.stripe.com"],
        report_uri="/api/security/csp-report",
    )


@pytest.fixture()
def development() -> HeaderComposer:
    return HeaderComposer(production=False, cors_origins=[ALLOWED_ORIGIN])


class TestNonce:
    def test_nonce_has_128_bits(self):
        assert len(base64.b64decode(generate_nonce())) == 16

    def test_nonces_unique(self, production):
        nonces = {production.compose(make_request()).nonce for _ in range(200)}
        assert len(nonces) == 200

    def test_policy_embeds_emitted_nonce(self, production):
        headers = production.compose(make_request()).as_headers()
        assert f"'nonce-{headers['X-CSP-Nonce']}'" in headers[CSP_HEADER]


class TestPolicy:
    def test_whitelist_directives(self, production):
        policy = production.compose(make_request()).policy
        for directive in (
            "default-src 'self'",
            "frame-ancestors 'none'",
            "base-uri 'self'",
            "form-action 'self'",
            "object-src 'none'",
            "upgrade-insecure-requests",
            "report-uri /api/security/csp-report",
        ):
            assert directive in policy
        assert "https://js.stripe.com" in policy

    def test_production_enforces(self, production):
        headers = production.compose(make_request()).as_headers()
        assert CSP_HEADER in headers
        assert CSP_REPORT_ONLY_HEADER not in headers

    def test_development_reports_only(self, development):
        headers = development.compose(make_request()).as_headers()
        assert CSP_REPORT_ONLY_HEADER in headers
        assert CSP_HEADER not in headers
        assert "upgrade-insecure-requests" not in headers[CSP_REPORT_ONLY_HEADER]

    def test_nonce_failure_degrades_to_static_headers(self, production, monkeypatch):
        def broken():
            raise OSError("no entropy")

        monkeypatch.setattr(security_headers, "generate_nonce", broken)
        headers = production.compose(make_request()).as_headers()
        assert headers["X-Frame-Options"] == "DENY"
        assert CSP_HEADER not in headers
        assert "X-CSP-Nonce" not in headers


class TestStaticHeaders:
    def test_hardening_headers(self, production):
        headers = production.compose(make_request()).as_headers()
        assert headers["X-Frame-Options"] == "DENY"
        assert headers["X-Content-Type-Options"] == "nosniff"
        assert headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert headers["Cross-Origin-Embedder-Policy"] == "require-corp"
        assert headers["Cross-Origin-Opener-Policy"] == "same-origin"
        assert headers["Cross-Origin-Resource-Policy"] == "same-origin"
        for feature in ("camera=()", "microphone=()", "geolocation=()", "payment=()", "usb=()"):
            assert feature in headers["Permissions-Policy"]

    def test_hsts_only_over_https(self, production):
        plain = production.compose(make_request()).as_headers()
        secure = production.compose(make_request(scheme="https")).as_headers()
        assert "Strict-Transport-Security" not in plain
        assert secure["Strict-Transport-Security"] == HSTS_VALUE

    def test_forwarded_proto_needs_trust(self):
        request = make_request(headers={"X-Forwarded-Proto": "https"})
        assert not HeaderComposer(production=True).is_secure(request)
        assert HeaderComposer(production=True, trust_proxy=True).is_secure(request)


class TestCors:
    def test_allowed_origin_echoed(self, production):
        headers = production.compose(make_request(headers={"Origin": ALLOWED_ORIGIN})).as_headers()
        assert headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN
        assert headers["Access-Control-Allow-Credentials"] == "true"
        assert headers["Access-Control-Max-Age"] == "86400"
        assert headers["Vary"] == "Origin"

    @pytest.mark.parametrize("origin", [FOREIGN_ORIGIN, ALLOWED_ORIGIN + ".evil.example", "*", "null"])
    def test_other_origins_omitted(self, production, origin):
        headers = production.compose(make_request(headers={"Origin": origin})).as_headers()
        assert "Access-Control-Allow-Origin" not in headers

    def test_only_api_routes(self, production):
        request = make_request("/dashboard", headers={"Origin": ALLOWED_ORIGIN})
        assert "Access-Control-Allow-Origin" not in production.compose(request).as_headers()
