"""Tests for code delivery: email, SMS gateway and the channel dispatcher."""

import json

import aiosmtplib
import httpx
import pytest

from edge_guard import config
from edge_guard.services import email as email_service
from edge_guard.services.channels import ChannelDispatcher, ContactDirectory
from edge_guard.services.sms import SmsGatewayClient


def _gateway(handler) -> SmsGatewayClient:
    return SmsGatewayClient(
        url="https://sms.example/send",
        token="tok",
        timeout=1,
        transport=httpx.MockTransport(handler),
    )


class TestSms:
    async def test_posts_to_gateway(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        client = _gateway(handler)
        assert await client.send_code("+37060000001", "123456") is True
        await client.close()

        body = json.loads(seen[0].content)
        assert body["to"] == "+37060000001"
        assert "123456" in body["message"]
        assert seen[0].headers["Authorization"] == "Bearer tok"

    async def test_gateway_rejection(self):
        client = _gateway(lambda request: httpx.Response(500))
        assert await client.send_code("+37060000001", "123456") is False
        await client.close()

    async def test_gateway_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _gateway(handler)
        assert await client.send_code("+37060000001", "123456") is False
        await client.close()

    async def test_console_fallback(self):
        client = SmsGatewayClient(url="", token="")
        assert not client.configured
        assert await client.send_code("+37060000001", "123456") is True
        await client.close()


class TestEmail:
    async def test_console_fallback(self, monkeypatch):
        monkeypatch.setattr(config, "smtp_enabled", lambda: False)

        async def fail_send(*args, **kwargs):
            raise AssertionError("SMTP must not be used")

        monkeypatch.setattr(aiosmtplib, "send", fail_send)
        assert await email_service.send_code_email("user@example.com", "123456") is True

    async def test_smtp_send(self, monkeypatch):
        monkeypatch.setattr(config, "smtp_enabled", lambda: True)
        sent = []

        async def fake_send(message, **kwargs):
            sent.append((message, kwargs))

        monkeypatch.setattr(aiosmtplib, "send", fake_send)
        assert await email_service.send_code_email("user@example.com", "654321") is True

        message, kwargs = sent[0]
        assert message["To"] == "user@example.com"
        assert "654321" in message.as_string()
        assert kwargs["hostname"] == config.SMTP_HOST

    async def test_smtp_failure(self, monkeypatch):
        monkeypatch.setattr(config, "smtp_enabled", lambda: True)

        async def broken_send(*args, **kwargs):
            raise aiosmtplib.SMTPConnectError("unreachable")

        monkeypatch.setattr(aiosmtplib, "send", broken_send)
        assert await email_service.send_code_email("user@example.com", "654321") is False


class TestDispatcher:
    async def test_routes_by_channel(self, monkeypatch):
        calls = []

        async def fake_email(address, code):
            calls.append(("email", address, code))
            return True

        monkeypatch.setattr("edge_guard.services.channels.send_code_email", fake_email)
        sms = _gateway(lambda request: httpx.Response(200))
        dispatcher = ChannelDispatcher(sms_client=sms)

        assert await dispatcher.send("email", "user@example.com", "111111") is True
        assert await dispatcher.send("sms", "+37060000001", "222222") is True
        assert calls == [("email", "user@example.com", "111111")]
        await dispatcher.close()

    async def test_unknown_channel(self):
        dispatcher = ChannelDispatcher(sms_client=_gateway(lambda request: httpx.Response(200)))
        with pytest.raises(ValueError):
            await dispatcher.send("fax", "x", "123456")
        await dispatcher.close()


class TestContactDirectory:
    def test_destinations(self):
        contacts = ContactDirectory()
        contacts.register("u1", email="u1@example.com", phone=None)
        assert contacts.destination("u1", "email") == "u1@example.com"
        assert contacts.destination("u1", "sms") is None
        assert contacts.destination("u2", "email") is None

        contacts.forget("u1")
        assert contacts.destination("u1", "email") is None

    def test_sweep_drops_users_without_session(self):
        active = {"u1"}
        contacts = ContactDirectory(is_active=lambda user_id: user_id in active)
        contacts.register("u1", email="u1@example.com")
        contacts.register("u2", email="u2@example.com")

        assert contacts.sweep() == 1
        assert contacts.destination("u1", "email") == "u1@example.com"
        assert contacts.destination("u2", "email") is None

        active.clear()
        assert contacts.sweep() == 1
        assert len(contacts) == 0

    def test_sweep_without_session_check_keeps_everything(self):
        contacts = ContactDirectory()
        contacts.register("u1", email="u1@example.com")
        assert contacts.sweep() == 0
        assert len(contacts) == 1
