"""
Pytest fixtures for the session engine tests.
"""
import asyncio

import pytest

from tictactoe import dashboard
from tictactoe.config import Config
from tictactoe.local_ledger import LocalLedger
from tictactoe.submitter import TransactionSubmitter

FAST = Config(
    confirm_poll_interval=0.001,
    confirm_attempts=5,
    funding_poll_interval=0.001,
    # Scheduler tests override the keep-alive period
    keep_alive_period=30.0,
    keep_alive_units_per_second=1000,
    liveness_threshold=10_000,
    poll_interval=0.01,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _flush() -> None:
    """Let the ledger deliver scheduled notifications."""
    await asyncio.sleep(0.001)


@pytest.fixture
def flush():
    return _flush


@pytest.fixture
def config() -> Config:
    return FAST


@pytest.fixture
def ledger(clock, config) -> LocalLedger:
    return LocalLedger(clock=clock, units_per_second=config.keep_alive_units_per_second)


@pytest.fixture
def submitter(ledger: LocalLedger, config: Config) -> TransactionSubmitter:
    return TransactionSubmitter(ledger, config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_lobby(ledger, submitter, config):
    async def _make():
        return await dashboard.create(ledger, submitter, config)
    return _make


@pytest.fixture
def make_clock():
    return FakeClock
