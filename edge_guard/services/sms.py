"""
SMS delivery for verification codes through an HTTP gateway.

The gateway is any endpoint accepting ``POST {"to": ..., "message": ...}``
with a bearer token.  Without a configured gateway, messages are logged to
the console instead (development).
"""

from __future__ import annotations

import logging

import httpx

from edge_guard import config

logger = logging.getLogger(__name__)


class SmsGatewayClient:
    """Async HTTP client for the SMS gateway. One instance per app lifetime."""

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url if url is not None else config.SMS_GATEWAY_URL
        headers = {}
        token = token if token is not None else config.SMS_GATEWAY_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout if timeout is not None else config.SMS_TIMEOUT,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._url)

    async def close(self) -> None:
        await self._client.aclose()

    async def send_code(self, phone: str, code: str) -> bool:
        """Deliver the code. False when the gateway rejects it or is unreachable."""
        if not self.configured:
            logger.info("📱 [DEV] Would send verification code %s to %s", code, phone)
            return True

        payload = {"to": phone, "message": f"Your verification code is {code}"}
        try:
            resp = await self._client.post(self._url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError:
            logger.exception("SMS gateway failed to deliver code to %s", phone)
            return False
        logger.info("Verification SMS sent to %s", phone)
        return True
