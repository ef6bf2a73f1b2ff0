"""Test fixtures for watchparty tests."""

import logging

import pytest

from watchparty.peer import Peer
from watchparty.session_clock import SessionClock
from watchparty.session_hub import SessionHub

START_MS = 1_700_000_000_000.0


class FakeTime:
    """Controllable millisecond clock."""

    def __init__(self, start: float = START_MS) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def fake_time() -> FakeTime:
    """Return a fake clock starting at a fixed instant."""
    return FakeTime()


@pytest.fixture
def clock(fake_time: FakeTime) -> SessionClock:
    """Return an empty session clock created at the fake clock's start."""
    return SessionClock(now=fake_time())


@pytest.fixture
def hub(clock: SessionClock, fake_time: FakeTime) -> SessionHub:
    """Return a hub driven by the fake clock."""
    return SessionHub(clock, now=fake_time, logger=logging.getLogger("test.session"))


@pytest.fixture
def make_peer():
    """Factory for peers with distinct addresses."""

    def _make(address: str = "203.0.113.1", queue_size: int = 64) -> Peer:
        return Peer(address=address, queue_size=queue_size)

    return _make
