"""
Session elevation store.

Tracks, per authenticated user, whether the session has passed two-factor
verification and when it was last active.  A session idle for longer than
the timeout is evicted, which also drops its two-factor flag.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from edge_guard.errors import SessionIdle, SessionUnauthenticated, StepUpRequired
from edge_guard.locks import StripedLock

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    user_id: str
    is_authenticated: bool = True
    two_factor_verified: bool = False
    last_activity: float = 0.0

    def idle_for(self, now: float) -> float:
        return now - self.last_activity


class SessionStore:
    def __init__(
        self,
        *,
        idle_timeout: float = 1800.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, UserSession] = {}
        self._locks = StripedLock()

    # ── Lifecycle ──────────────────────────────────────────────────────

    def open(self, user_id: str) -> UserSession:
        """Start a fresh authenticated (not yet verified) session."""
        with self._locks.for_key(user_id):
            session = UserSession(user_id=user_id, last_activity=self._clock())
            self._sessions[user_id] = session
            logger.info("Session opened for user %s", user_id)
            return replace(session)

    def end(self, user_id: str) -> bool:
        with self._locks.for_key(user_id):
            return self._sessions.pop(user_id, None) is not None

    # ── Access ─────────────────────────────────────────────────────────

    def get(self, user_id: str) -> UserSession | None:
        """Snapshot of the live session, or None if absent or idle."""
        with self._locks.for_key(user_id):
            session = self._live(user_id, self._clock())
            return replace(session) if session is not None else None

    def authorize(self, user_id: str, *, require_two_factor: bool = True) -> UserSession:
        """Route guard: validate the session and touch its last activity.

        Raises SessionUnauthenticated, SessionIdle or StepUpRequired.
        """
        now = self._clock()
        with self._locks.for_key(user_id):
            session = self._sessions.get(user_id)
            if session is None or not session.is_authenticated:
                raise SessionUnauthenticated()
            if session.idle_for(now) > self.idle_timeout:
                del self._sessions[user_id]
                logger.info("Session for user %s evicted after inactivity", user_id)
                raise SessionIdle()
            if require_two_factor and not session.two_factor_verified:
                raise StepUpRequired()
            session.last_activity = now
            return replace(session)

    def elevate(self, user_id: str) -> UserSession:
        """Mark the session two-factor verified. Only the two-factor service calls this."""
        now = self._clock()
        with self._locks.for_key(user_id):
            session = self._live(user_id, now)
            if session is None:
                raise SessionUnauthenticated()
            session.two_factor_verified = True
            session.last_activity = now
            logger.info("Session for user %s elevated to two-factor verified", user_id)
            return replace(session)

    def is_elevated(self, user_id: str) -> bool:
        """Read-only check; does not count as activity."""
        session = self.get(user_id)
        return session is not None and session.two_factor_verified

    # ── Maintenance ────────────────────────────────────────────────────

    def sweep(self) -> int:
        now = self._clock()
        evicted = 0
        for user_id in list(self._sessions):
            with self._locks.for_key(user_id):
                session = self._sessions.get(user_id)
                if session is not None and session.idle_for(now) > self.idle_timeout:
                    del self._sessions[user_id]
                    evicted += 1
        if evicted:
            logger.info("Evicted %d idle sessions", evicted)
        return evicted

    def __len__(self) -> int:
        return len(self._sessions)

    def _live(self, user_id: str, now: float) -> UserSession | None:
        """Caller must hold the key's lock. Evicts the session if it went idle."""
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if session.idle_for(now) > self.idle_timeout:
            del self._sessions[user_id]
            return None
        return session
