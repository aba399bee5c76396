"""
Delivery channels for two-factor codes.

``ContactDirectory`` knows where each user can receive a code;
``ChannelDispatcher`` adapts the email and SMS senders to one
``send(channel, destination, code) -> bool`` call.  Delivery itself (SMTP,
SMS gateway, their retries and timeouts) lives in the sender modules.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from edge_guard.services.email import send_code_email
from edge_guard.services.sms import SmsGatewayClient

logger = logging.getLogger(__name__)

EMAIL = "email"
SMS = "sms"
CHANNELS = (EMAIL, SMS)


@dataclass(frozen=True)
class Contact:
    email: str | None = None
    phone: str | None = None


class ContactDirectory:
    """Per-user delivery destinations, recorded by the primary login.

    ``is_active`` reports whether a user still has a live session; ``sweep``
    drops the contacts of everyone else.
    """

    def __init__(self, is_active: Callable[[str], bool] | None = None) -> None:
        self._contacts: dict[str, Contact] = {}
        self._lock = threading.Lock()
        self._is_active = is_active

    def register(self, user_id: str, *, email: str | None = None, phone: str | None = None) -> None:
        with self._lock:
            self._contacts[user_id] = Contact(email=email, phone=phone)

    def forget(self, user_id: str) -> None:
        with self._lock:
            self._contacts.pop(user_id, None)

    def sweep(self) -> int:
        if self._is_active is None:
            return 0
        with self._lock:
            stale = [user_id for user_id in self._contacts if not self._is_active(user_id)]
            for user_id in stale:
                del self._contacts[user_id]
        if stale:
            logger.info("Dropped contacts of %d users without a session", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._contacts)

    def destination(self, user_id: str, channel: str) -> str | None:
        contact = self._contacts.get(user_id)
        if contact is None:
            return None
        if channel == EMAIL:
            return contact.email
        if channel == SMS:
            return contact.phone
        return None


class ChannelDispatcher:
    def __init__(self, sms_client: SmsGatewayClient | None = None) -> None:
        self._sms = sms_client or SmsGatewayClient()

    async def close(self) -> None:
        await self._sms.close()

    async def send_email(self, address: str, code: str) -> bool:
        return await send_code_email(address, code)

    async def send_sms(self, phone: str, code: str) -> bool:
        return await self._sms.send_code(phone, code)

    async def send(self, channel: str, destination: str, code: str) -> bool:
        if channel == EMAIL:
            return await self.send_email(destination, code)
        if channel == SMS:
            return await self.send_sms(destination, code)
        raise ValueError(f"Unsupported channel: {channel}")
