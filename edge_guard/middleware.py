"""
Edge security middleware.

Per request, in order:
  1. compose the security header set (fresh CSP nonce, CORS for API routes)
  2. classify the path and run the matching rate limit policy
  3. answer API ``OPTIONS`` directly (200, no body)
  4. call the application and decorate its response

A throttled request never reaches the application; it gets a 429 carrying
the same security headers plus ``Retry-After``.
"""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from edge_guard.fingerprint import fingerprint
from edge_guard.rate_limit import Decision, RateLimiter, RateLimitPolicy, Throttled, policy_name_for_path
from edge_guard.rate_limit.limiter import rate_limit_headers
from edge_guard.security_headers import HeaderComposer, SecurityHeaderSet

logger = logging.getLogger(__name__)


class EdgeSecurityMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        limiter: RateLimiter,
        composer: HeaderComposer,
        trust_proxy: bool = False,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.composer = composer
        self.trust_proxy = trust_proxy

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        header_set = self.composer.compose(request)
        request.state.csp_nonce = header_set.nonce

        policy = self._policy_for(request)
        decision: Decision | None = None
        caller = ""
        if policy is not None:
            caller = fingerprint(request, trust_proxy=self.trust_proxy)
            decision = self.limiter.check(policy, caller, request)
            if isinstance(decision, Throttled):
                return self._finish(self._throttled_response(policy, decision), header_set, decision)

        if request.method == "OPTIONS" and self.composer.is_api(request):
            return self._finish(Response(status_code=200), header_set, decision)

        response = await call_next(request)

        if policy is not None and policy.skip_successful and response.status_code < 400:
            self.limiter.release(policy, caller, decision)
        return self._finish(response, header_set, decision)

    def _policy_for(self, request: Request) -> RateLimitPolicy | None:
        name = policy_name_for_path(request.url.path)
        if name is None:
            return None
        return self.limiter.policies.get(name)

    @staticmethod
    def _throttled_response(policy: RateLimitPolicy, decision: Throttled) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limited",
                "detail": f"Rate limit exceeded: {policy.describe()}",
                "message": decision.message,
                "retryAfter": decision.retry_after_seconds,
            },
        )

    @staticmethod
    def _finish(response: Response, header_set: SecurityHeaderSet, decision: Decision | None) -> Response:
        for name, value in header_set.as_headers().items():
            if name == "Vary" and "vary" in response.headers:
                existing = response.headers["vary"]
                if value.lower() not in existing.lower():
                    response.headers["Vary"] = f"{existing}, {value}"
                continue
            response.headers[name] = value
        if decision is not None:
            response.headers.update(rate_limit_headers(decision))
        return response
