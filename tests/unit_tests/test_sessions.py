"""Tests for the session elevation store and its route guard."""

import pytest

from edge_guard.errors import SessionIdle, SessionUnauthenticated, StepUpRequired
from tests.mocks.models import MOCK_USER_ID


class TestAuthorize:
    def test_unknown_user(self, sessions):
        with pytest.raises(SessionUnauthenticated):
            sessions.authorize(MOCK_USER_ID)

    def test_step_up_required_before_two_factor(self, sessions):
        sessions.open(MOCK_USER_ID)
        with pytest.raises(StepUpRequired) as exc_info:
            sessions.authorize(MOCK_USER_ID)
        assert exc_info.value.status_code == 428

    def test_unverified_allowed_when_not_required(self, sessions):
        sessions.open(MOCK_USER_ID)
        session = sessions.authorize(MOCK_USER_ID, require_two_factor=False)
        assert session.is_authenticated
        assert not session.two_factor_verified

    def test_elevated_session_passes(self, sessions):
        sessions.open(MOCK_USER_ID)
        sessions.elevate(MOCK_USER_ID)
        assert sessions.authorize(MOCK_USER_ID).two_factor_verified

    def test_authorize_touches_activity(self, sessions, clock):
        sessions.open(MOCK_USER_ID)
        sessions.elevate(MOCK_USER_ID)
        clock.advance(1000)
        assert sessions.authorize(MOCK_USER_ID).last_activity == clock.now

        # activity was refreshed, so another 1000s is still inside the timeout
        clock.advance(1000)
        sessions.authorize(MOCK_USER_ID)

    def test_idle_session_evicted(self, sessions, clock):
        sessions.open(MOCK_USER_ID)
        sessions.elevate(MOCK_USER_ID)
        clock.advance(1801)

        with pytest.raises(SessionIdle):
            sessions.authorize(MOCK_USER_ID)
        # evicted: the next attempt sees no session at all
        with pytest.raises(SessionUnauthenticated):
            sessions.authorize(MOCK_USER_ID)


class TestElevation:
    def test_elevate_requires_session(self, sessions):
        with pytest.raises(SessionUnauthenticated):
            sessions.elevate(MOCK_USER_ID)

    def test_reopen_drops_verification(self, sessions):
        sessions.open(MOCK_USER_ID)
        sessions.elevate(MOCK_USER_ID)
        sessions.open(MOCK_USER_ID)
        assert not sessions.is_elevated(MOCK_USER_ID)

    def test_is_elevated_does_not_touch_activity(self, sessions, clock):
        sessions.open(MOCK_USER_ID)
        sessions.elevate(MOCK_USER_ID)
        started = clock.now
        clock.advance(100)
        assert sessions.is_elevated(MOCK_USER_ID)
        assert sessions.get(MOCK_USER_ID).last_activity == started

    def test_end(self, sessions):
        sessions.open(MOCK_USER_ID)
        assert sessions.end(MOCK_USER_ID) is True
        assert sessions.end(MOCK_USER_ID) is False
        assert sessions.get(MOCK_USER_ID) is None


def test_sweep_evicts_idle_sessions(sessions, clock):
    sessions.open("a")
    clock.advance(1000)
    sessions.open("b")
    clock.advance(900)

    assert sessions.sweep() == 1
    assert sessions.get("a") is None
    assert sessions.get("b") is not None
