import json
from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from discoverycall.config import Settings
from discoverycall.discovery import DiscoveryTracker
from discoverycall.handler import CallHandler

PHOENIX = ZoneInfo("America/Phoenix")

# Monday
MONDAY_10AM = datetime(2026, 10, 19, 10, 0, tzinfo=PHOENIX)


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def spoken(send: AsyncMock) -> list[str]:
    """Contents of every message written to the connection."""
    return [json.loads(c.args[0])["content"] for c in send.await_args_list]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(openai_api_key="sk-test", booking_dispatch_delay_s=0)


@pytest.fixture
def tracker():
    return DiscoveryTracker()


@pytest.fixture
def send():
    return AsyncMock()


@pytest.fixture
def make_handler(send, tracker, settings, clock):
    def _make(query=None, path="call_abc123", **collaborators):
        return CallHandler(
            path,
            query or {},
            send,
            tracker,
            settings,
            clock=clock,
            sleep=clock.sleep,
            **collaborators,
        )
    return _make
