"""Shared test fixtures for bitchat errors."""

import pytest
from bitchat.core.config import HandlerConfig
from bitchat.core.handler import ErrorHandler, reset_error_handler


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


class RecordingSleep:
    """Async sleep stand-in that records requested delays and returns at once."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(autouse=True)
def _reset_default_handler():
    """Every test starts and ends without a default handler."""
    reset_error_handler()
    yield
    reset_error_handler()


@pytest.fixture
def handler_config():
    """Handler config that keeps the console quiet and hooks nothing."""
    return HandlerConfig(
        log_to_console=False,
        capture_global_errors=False,
        capture_unhandled_rejections=False,
    )


@pytest.fixture
def handler(handler_config):
    """Create a fresh, uninstalled error handler."""
    h = ErrorHandler(handler_config)
    yield h
    h.uninstall()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()
