"""
tests/test_concurrency.py

Concurrent claims against one escrow.
Both claimants read the open balance before either submission lands; the
ledger settles the race and exactly one claim wins.

Run:
    pytest tests/test_concurrency.py -v --tb=short
"""

import asyncio

import pytest

from farmescrow.core.exceptions import ConflictError, LedgerSubmissionError
from farmescrow.core.models import ClaimResult, EscrowRequest, RefundRequest, ReleaseRequest
from farmescrow.escrow.engine import EscrowEngine
from farmescrow.gateway.memory import InMemoryLedger

from conftest import START


@pytest.fixture
def slow_ledger(clock, config, platform, farmer, buyer):
    ledger = InMemoryLedger(config.network_passphrase, clock=clock, latency=0.01)
    for key in (platform, farmer, buyer):
        ledger.create_account(key.public_key)
    return ledger


async def open_escrow(engine, farmer, buyer):
    receipt = await engine.create_escrow(EscrowRequest(
        farmer_public_key=farmer.public_key,
        buyer_public_key=buyer.public_key,
        amount="40",
        deadline_unix_timestamp=START + 600,
        order_id="ORD-RACE",
    ))
    return receipt.balance_id


class TestConcurrentClaims:

    @pytest.mark.asyncio
    async def test_double_release_settles_once(self, slow_ledger, config, clock, farmer, buyer):
        engine = EscrowEngine(slow_ledger, config, clock=clock)
        balance_id = await open_escrow(engine, farmer, buyer)
        request = ReleaseRequest(balance_id, farmer.public_key, farmer.secret)

        outcomes = await asyncio.gather(
            engine.release_payment(request),
            engine.release_payment(request),
            return_exceptions=True,
        )

        wins = [o for o in outcomes if isinstance(o, ClaimResult)]
        losses = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(wins) == 1
        assert len(losses) == 1
        assert await slow_ledger.get_claimable_balances(farmer.public_key) == []

    @pytest.mark.asyncio
    async def test_sequence_race_is_not_a_conflict(
        self, slow_ledger, config, clock, farmer, buyer
    ):
        engine = EscrowEngine(slow_ledger, config, clock=clock)
        first = await open_escrow(engine, farmer, buyer)
        second = await open_escrow(engine, farmer, buyer)
        clock.advance(601)

        results = await asyncio.gather(
            engine.refund_escrow(_refund(first, buyer)),
            engine.refund_escrow(_refund(second, buyer)),
            return_exceptions=True,
        )

        # Same source account: the second submission loses the sequence race
        # and must not be reported as a lost escrow.
        assert sum(isinstance(r, ClaimResult) for r in results) == 1
        (loser,) = [r for r in results if not isinstance(r, ClaimResult)]
        assert isinstance(loser, LedgerSubmissionError)
        assert loser.result_code == "tx_bad_seq"
        assert len(await slow_ledger.get_claimable_balances(buyer.public_key)) == 1


def _refund(balance_id, buyer):
    return RefundRequest(balance_id, buyer.public_key, buyer.secret)
