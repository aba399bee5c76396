"""
Two-factor token service.

Lifecycle of a challenge per (user, channel)::

    NONE ──initiate──▶ PENDING ──verify ok──▶ VERIFIED (session elevated, challenge gone)
                          │
                          ├── now > expires_at ──▶ EXPIRED (removed on next lookup)
                          └── attempts == ceiling ─▶ LOCKED (until expiry or re-initiate)

A new ``initiate`` always replaces the previous challenge for the key.
Backup codes are the fallback once a challenge locks or the channel is
unreachable; each code can be consumed exactly once.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from edge_guard import db
from edge_guard.errors import (
    ChallengeExpired,
    ChallengeLocked,
    ChallengeNotFound,
    ChannelUnavailable,
    CodeMismatch,
    DispatchFailure,
    InvalidBackupCode,
    SessionUnauthenticated,
)
from edge_guard.locks import StripedLock
from edge_guard.services.channels import CHANNELS, ChannelDispatcher, ContactDirectory
from edge_guard.sessions import SessionStore, UserSession

logger = logging.getLogger(__name__)

CODE_DIGITS = 6
BACKUP_CODE_LENGTH = 8
# No 0/O or 1/I so codes survive being read aloud or handwritten.
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class ChallengeState(enum.Enum):
    PENDING = "pending"
    EXPIRED = "expired"
    LOCKED = "locked"


@dataclass
class TwoFactorChallenge:
    user_id: str
    channel: str
    code: str
    issued_at: float
    expires_at: float
    max_attempts: int
    attempts: int = 0

    def state(self, now: float) -> ChallengeState:
        if now > self.expires_at:
            return ChallengeState.EXPIRED
        if self.attempts >= self.max_attempts:
            return ChallengeState.LOCKED
        return ChallengeState.PENDING

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)


@dataclass(frozen=True)
class ChallengeIssued:
    channel: str
    expires_at: float


def generate_code() -> str:
    """Uniform 6-digit numeric code; leading zeros are kept."""
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


def generate_backup_code() -> str:
    return "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))


def normalize_backup_code(code: str) -> str:
    return code.strip().upper().replace("-", "").replace(" ", "")


class TwoFactorService:
    def __init__(
        self,
        sessions: SessionStore,
        directory: ContactDirectory,
        dispatcher: ChannelDispatcher,
        *,
        secret: str,
        token_expiry: float = 300.0,
        max_attempts: int = 5,
        backup_code_count: int = 10,
        channels: Iterable[str] = CHANNELS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._directory = directory
        self._dispatcher = dispatcher
        self._secret = secret.encode("utf-8")
        self.token_expiry = token_expiry
        self.max_attempts = max_attempts
        self.backup_code_count = backup_code_count
        self.channels = frozenset(channels)
        self._clock = clock
        self._challenges: dict[tuple[str, str], TwoFactorChallenge] = {}
        self._locks = StripedLock()

    def now(self) -> float:
        return self._clock()

    # ── Challenge issue ────────────────────────────────────────────────

    async def initiate(self, user_id: str, channel: str) -> ChallengeIssued:
        """Issue a fresh code and deliver it.

        The challenge is stored before delivery and survives a delivery
        failure, so ``resend`` can retry without invalidating the code.
        Raises ChannelUnavailable or DispatchFailure.
        """
        destination = self._destination(user_id, channel)
        now = self._clock()
        challenge = TwoFactorChallenge(
            user_id=user_id,
            channel=channel,
            code=generate_code(),
            issued_at=now,
            expires_at=now + self.token_expiry,
            max_attempts=self.max_attempts,
        )
        key = (user_id, channel)
        with self._locks.for_key(key):
            self._challenges[key] = challenge
        logger.info("Two-factor challenge issued for user %s via %s", user_id, channel)

        await self._dispatch(user_id, channel, destination, challenge.code)
        return ChallengeIssued(channel=channel, expires_at=challenge.expires_at)

    async def resend(self, user_id: str, channel: str) -> ChallengeIssued:
        """Deliver the live code again; its expiry and attempts are unchanged."""
        destination = self._destination(user_id, channel)
        key = (user_id, channel)
        with self._locks.for_key(key):
            challenge = self._pending(key, self._clock())
            code, expires_at = challenge.code, challenge.expires_at

        await self._dispatch(user_id, channel, destination, code)
        return ChallengeIssued(channel=channel, expires_at=expires_at)

    # ── Verification ───────────────────────────────────────────────────

    async def verify(self, user_id: str, channel: str, submitted_code: str) -> UserSession:
        """Check a submitted code and elevate the session on success.

        Raises ChallengeNotFound, ChallengeExpired, ChallengeLocked or CodeMismatch.
        """
        key = (user_id, channel)
        with self._locks.for_key(key):
            challenge = self._pending(key, self._clock())
            challenge.attempts += 1
            if not hmac.compare_digest(
                challenge.code.encode("utf-8"),
                submitted_code.strip().encode("utf-8"),
            ):
                logger.warning(
                    "Incorrect two-factor code for user %s via %s (%d attempts left)",
                    user_id, channel, challenge.attempts_remaining,
                )
                raise CodeMismatch(attempts_remaining=challenge.attempts_remaining)

            session = self._sessions.elevate(user_id)
            del self._challenges[key]
        return session

    def challenge(self, user_id: str, channel: str) -> TwoFactorChallenge | None:
        """The stored challenge for a key, whatever its state."""
        return self._challenges.get((user_id, channel))

    def discard(self, user_id: str) -> None:
        """Drop every challenge of a user (logout)."""
        for channel in CHANNELS:
            key = (user_id, channel)
            with self._locks.for_key(key):
                self._challenges.pop(key, None)

    # ── Backup codes ───────────────────────────────────────────────────

    async def generate_backup_codes(self, user_id: str) -> list[str]:
        """Replace the user's batch. The plaintext codes are returned only here."""
        codes: set[str] = set()
        while len(codes) < self.backup_code_count:
            codes.add(generate_backup_code())
        await db.replace_backup_codes(user_id, [self._hash_backup_code(user_id, c) for c in codes])
        logger.info("Generated %d backup codes for user %s", len(codes), user_id)
        return sorted(codes)

    async def verify_backup_code(self, user_id: str, code: str) -> UserSession:
        """Consume one unused backup code and elevate the session.

        A failed lookup consumes nothing. Raises InvalidBackupCode.
        """
        if self._sessions.get(user_id) is None:
            raise SessionUnauthenticated()

        normalized = normalize_backup_code(code)
        code_hash = self._hash_backup_code(user_id, normalized)
        consumed = bool(normalized) and await db.consume_backup_code(user_id, code_hash)
        if not consumed:
            remaining = await db.count_unused_backup_codes(user_id)
            logger.warning("Rejected backup code for user %s (%d unused left)", user_id, remaining)
            raise InvalidBackupCode(remaining_codes=remaining)

        try:
            session = self._sessions.elevate(user_id)
        except SessionUnauthenticated:
            # Session ended while the code was being consumed; give the code back.
            await db.release_backup_code(user_id, code_hash)
            logger.warning("Session for user %s ended during backup verification", user_id)
            raise
        self.discard(user_id)
        logger.info("User %s verified with a backup code", user_id)
        return session

    async def remaining_backup_codes(self, user_id: str) -> int:
        return await db.count_unused_backup_codes(user_id)

    # ── Maintenance ────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Remove expired challenges. Returns how many were removed."""
        now = self._clock()
        removed = 0
        for key in list(self._challenges):
            with self._locks.for_key(key):
                challenge = self._challenges.get(key)
                if challenge is not None and challenge.state(now) is ChallengeState.EXPIRED:
                    del self._challenges[key]
                    removed += 1
        if removed:
            logger.info("Evicted %d expired two-factor challenges", removed)
        return removed

    def __len__(self) -> int:
        return len(self._challenges)

    # ── Internals ──────────────────────────────────────────────────────

    def _destination(self, user_id: str, channel: str) -> str:
        if channel not in self.channels:
            raise ChannelUnavailable(f"Channel {channel!r} is not enabled.", channel=channel)
        destination = self._directory.destination(user_id, channel)
        if not destination:
            raise ChannelUnavailable(channel=channel)
        return destination

    def _pending(self, key: tuple[str, str], now: float) -> TwoFactorChallenge:
        """Caller must hold the key's lock. Returns the challenge only if PENDING."""
        challenge = self._challenges.get(key)
        if challenge is None:
            raise ChallengeNotFound()
        state = challenge.state(now)
        if state is ChallengeState.EXPIRED:
            del self._challenges[key]
            raise ChallengeExpired()
        if state is ChallengeState.LOCKED:
            logger.warning("Two-factor challenge locked for user %s via %s", key[0], key[1])
            raise ChallengeLocked()
        return challenge

    async def _dispatch(self, user_id: str, channel: str, destination: str, code: str) -> None:
        """Deliver outside any lock; any failure surfaces as DispatchFailure."""
        try:
            delivered = await self._dispatcher.send(channel, destination, code)
        except Exception as exc:
            logger.exception("Delivery via %s raised for user %s", channel, user_id)
            raise DispatchFailure(channel=channel) from exc
        if not delivered:
            logger.warning("Delivery via %s failed for user %s", channel, user_id)
            raise DispatchFailure(channel=channel)

    def _hash_backup_code(self, user_id: str, normalized_code: str) -> str:
        return hmac.new(
            self._secret,
            f"{user_id}:{normalized_code}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
