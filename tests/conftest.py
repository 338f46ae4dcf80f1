from __future__ import annotations

from typing import Any

import pytest

from scale_relay.broadcaster import Broadcaster
from scale_relay.reaper import Reaper
from scale_relay.registration import RegistrationEngine
from scale_relay.registry import Session, SessionRegistry


class FakeTransport:
    """Records what the core sends; ``send`` fails once closed, like the real one."""

    def __init__(self, remote: str = "test") -> None:
        self.remote = remote
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None
        self.open = True

    @property
    def is_open(self) -> bool:
        return self.open

    def send(self, payload: dict[str, Any]) -> bool:
        if not self.open:
            return False
        self.sent.append(payload)
        return True

    def close(self, code: int, reason: str) -> None:
        if not self.open:
            return
        self.open = False
        self.closed = (code, reason)

    def drop(self) -> None:
        """Simulate the peer vanishing without a server-side close."""
        self.open = False


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def engine(registry, clock) -> RegistrationEngine:
    return RegistrationEngine(registry, clock=clock)


@pytest.fixture
def broadcaster(registry) -> Broadcaster:
    return Broadcaster(registry)


@pytest.fixture
def reaper(registry, clock) -> Reaper:
    return Reaper(registry, idle_timeout=3600, sweep_interval=600, clock=clock)


@pytest.fixture
def make_session(clock):
    def _make(remote: str = "peer") -> Session:
        return Session(FakeTransport(remote), remote=remote, last_activity=clock())

    return _make
