"""
Pytest fixtures for FarmEscrow tests.

Everything runs against InMemoryLedger with a hand-driven clock.
No test touches the network.
"""

import pytest

from farmescrow.core.config import LedgerConfig
from farmescrow.core.crypto import Ed25519KeyManager
from farmescrow.gateway.memory import InMemoryLedger

START = 1_760_000_000


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class ExplodingGateway:
    """Fails the test on any gateway access."""

    def __getattr__(self, name):
        raise AssertionError(f"unexpected gateway call: {name}")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def platform():
    return Ed25519KeyManager.generate()


@pytest.fixture
def farmer():
    return Ed25519KeyManager.generate()


@pytest.fixture
def buyer():
    return Ed25519KeyManager.generate()


@pytest.fixture
def config(platform):
    return LedgerConfig(network="testnet", platform_secret_key=platform.secret)


@pytest.fixture
def ledger(clock, config, platform, farmer, buyer):
    ledger = InMemoryLedger(config.network_passphrase, clock=clock)
    for key in (platform, farmer, buyer):
        ledger.create_account(key.public_key)
    return ledger


@pytest.fixture
def exploding_gateway():
    return ExplodingGateway()
