"""Tests for the background state sweeper."""

import asyncio

from edge_guard.sweeper import StateSweeper
from tests.mocks.models import MOCK_USER_ID


class _Target:
    def __init__(self, evicts: int = 0, error: Exception | None = None) -> None:
        self.evicts = evicts
        self.error = error
        self.calls = 0

    def sweep(self) -> int:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.evicts


def test_sweep_once_collects_counts():
    sweeper = StateSweeper({"a": _Target(2), "b": _Target(0)}, interval=60)
    assert sweeper.sweep_once() == {"a": 2, "b": 0}


def test_failing_target_does_not_stop_others():
    healthy = _Target(1)
    sweeper = StateSweeper({"broken": _Target(error=RuntimeError("boom")), "healthy": healthy}, interval=60)
    assert sweeper.sweep_once() == {"healthy": 1}
    assert healthy.calls == 1


async def test_loop_runs_until_stopped():
    target = _Target(1)
    sweeper = StateSweeper({"t": target}, interval=0.01)

    await sweeper.start()
    assert sweeper.running
    await asyncio.sleep(0.05)
    await sweeper.stop()

    assert not sweeper.running
    assert target.calls >= 1


def test_app_sweep_drops_contacts_of_idle_users(app, login, clock):
    login()
    clock.advance(1801)

    evicted = app.state.sweeper.sweep_once()
    assert evicted["sessions"] == 1
    assert evicted["contacts"] == 1
    assert app.state.directory.destination(MOCK_USER_ID, "email") is None
