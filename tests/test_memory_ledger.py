"""
tests/test_memory_ledger.py

The simulated ledger's transaction rules. The escrow tests lean on these,
so they get checked directly.
"""

from decimal import Decimal

import pytest
from stellar_sdk import Network

from farmescrow.core.crypto import Ed25519KeyManager
from farmescrow.core.exceptions import LedgerSubmissionError, NotFoundError
from farmescrow.core.models import Asset, Claimant, ClaimPredicate, TransactionStatus
from farmescrow.core.transaction import (
    created_balance_ids,
    new_builder,
    sign,
    to_sdk_asset,
    to_sdk_claimant,
)

from conftest import START


def builder_for(ledger, source, sequence, fee=100, timeout=180, now=START, passphrase=None):
    return new_builder(
        source.public_key,
        sequence,
        fee,
        passphrase or ledger.network_passphrase,
        now=now,
        timeout=timeout,
    )


def lock(builder, amount, *claimants):
    builder.append_create_claimable_balance_op(
        asset=to_sdk_asset(Asset.native()),
        amount=amount,
        claimants=[
            to_sdk_claimant(Claimant(k.public_key, ClaimPredicate.unconditional()))
            for k in claimants
        ],
    )
    return builder


def build(ledger, source, sequence, amounts, claimant, **kwargs):
    builder = builder_for(ledger, source, sequence, **kwargs)
    for amount in amounts:
        lock(builder, amount, claimant)
    return sign(builder.build(), source)


def claim(ledger, source, sequence, balance_id):
    builder = builder_for(ledger, source, sequence)
    builder.append_claim_claimable_balance_op(balance_id)
    return sign(builder.build(), source)


async def sequence_of(ledger, key):
    return (await ledger.get_account(key.public_key)).sequence


class TestValidity:

    @pytest.mark.asyncio
    async def test_bad_sequence(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(build(ledger, platform, seq + 5, ["1"], farmer))
        assert exc.value.result_code == "tx_bad_seq"

    @pytest.mark.asyncio
    async def test_fee_below_floor(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(build(ledger, platform, seq, ["1"], farmer, fee=50))
        assert exc.value.result_code == "tx_insufficient_fee"

    @pytest.mark.asyncio
    async def test_too_late(self, ledger, clock, platform, farmer):
        seq = await sequence_of(ledger, platform)
        envelope = build(ledger, platform, seq, ["1"], farmer, timeout=30)
        clock.advance(31)
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(envelope)
        assert exc.value.result_code == "tx_too_late"

    @pytest.mark.asyncio
    async def test_unsigned(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        envelope = lock(builder_for(ledger, platform, seq), "1", farmer).build()
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(envelope)
        assert exc.value.result_code == "tx_bad_auth"

    @pytest.mark.asyncio
    async def test_wrong_signer(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        envelope = sign(lock(builder_for(ledger, platform, seq), "1", farmer).build(), farmer)
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(envelope)
        assert exc.value.result_code == "tx_bad_auth"
        assert (await ledger.get_account(platform.public_key)).sequence == seq

    @pytest.mark.asyncio
    async def test_signed_for_another_network(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        envelope = build(
            ledger, platform, seq, ["1"], farmer,
            passphrase=Network.PUBLIC_NETWORK_PASSPHRASE,
        )
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(envelope)
        assert exc.value.result_code == "tx_bad_auth"

    @pytest.mark.asyncio
    async def test_unknown_source(self, ledger, farmer):
        ghost = Ed25519KeyManager.generate()
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(build(ledger, ghost, 1, ["1"], farmer))
        assert exc.value.result_code == "tx_no_source_account"


class TestApplication:

    @pytest.mark.asyncio
    async def test_failed_operation_consumes_sequence_and_fee(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        envelope = build(ledger, platform, seq, ["1", "50000"], farmer)
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(envelope)
        assert exc.value.result_code == "tx_failed"
        assert exc.value.operation_codes == ("op_success", "op_underfunded")

        snapshot = await ledger.get_account(platform.public_key)
        assert snapshot.sequence == seq + 1
        assert snapshot.balance == Decimal("10000") - Decimal("0.00002")
        assert await ledger.get_claimable_balances(farmer.public_key) == []

        outcome = await ledger.get_transaction(envelope.hash_hex())
        assert outcome.status == TransactionStatus.FAILED
        assert outcome.result_code == "tx_failed"

    @pytest.mark.asyncio
    async def test_result_carries_created_ids(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        result = await ledger.submit_transaction(build(ledger, platform, seq, ["1", "2"], farmer))
        ids = created_balance_ids(result.result_xdr)
        assert len(ids) == 2
        assert len(set(ids)) == 2
        for balance_id in ids:
            assert (await ledger.get_claimable_balance(balance_id)).balance_id == balance_id

    @pytest.mark.asyncio
    async def test_claim_removes_balance_and_records_history(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        result = await ledger.submit_transaction(build(ledger, platform, seq, ["3"], farmer))
        (balance_id,) = created_balance_ids(result.result_xdr)

        fseq = await sequence_of(ledger, farmer)
        await ledger.submit_transaction(claim(ledger, farmer, fseq, balance_id))
        with pytest.raises(NotFoundError):
            await ledger.get_claimable_balance(balance_id)

        history = await ledger.get_claimable_balance_operations(balance_id)
        assert [op.type for op in history] == ["create_claimable_balance", "claim_claimable_balance"]
        assert history[0].claimants[0].destination == farmer.public_key
        assert history[0].source_account == platform.public_key
        assert history[1].source_account == farmer.public_key

        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(claim(ledger, farmer, fseq + 1, balance_id))
        assert exc.value.operation_codes == ("op_does_not_exist",)

    @pytest.mark.asyncio
    async def test_duplicate_claimants_malformed(self, ledger, platform, farmer):
        seq = await sequence_of(ledger, platform)
        envelope = sign(lock(builder_for(ledger, platform, seq), "1", farmer, farmer).build(), platform)
        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(envelope)
        assert exc.value.operation_codes == ("op_malformed",)

    @pytest.mark.asyncio
    async def test_unknown_history_is_empty(self, ledger):
        assert await ledger.get_claimable_balance_operations("00000000" + "00" * 32) == ()


class TestAuthorisation:

    @pytest.mark.asyncio
    async def test_operations_judged_against_signers_before_the_transaction(
        self, ledger, platform
    ):
        # Thresholds rise before the signer is added. Weights come from the
        # account as it stood before the transaction.
        cosigner = Ed25519KeyManager.generate()
        seq = await sequence_of(ledger, platform)
        builder = builder_for(ledger, platform, seq)
        builder.append_set_options_op(
            master_weight=1, low_threshold=2, med_threshold=2, high_threshold=2
        )
        builder.append_ed25519_public_key_signer(cosigner.public_key, 1)
        await ledger.submit_transaction(sign(builder.build(), platform))

        snapshot = await ledger.get_account(platform.public_key)
        assert snapshot.thresholds.high == 2
        assert {s.key: s.weight for s in snapshot.signers} == {
            platform.public_key: 1, cosigner.public_key: 1,
        }

    @pytest.mark.asyncio
    async def test_raised_thresholds_apply_to_the_next_transaction(self, ledger, platform, farmer):
        cosigner = Ed25519KeyManager.generate()
        seq = await sequence_of(ledger, platform)
        builder = builder_for(ledger, platform, seq)
        builder.append_ed25519_public_key_signer(cosigner.public_key, 1)
        builder.append_set_options_op(low_threshold=2, med_threshold=2, high_threshold=2)
        await ledger.submit_transaction(sign(builder.build(), platform))

        with pytest.raises(LedgerSubmissionError) as exc:
            await ledger.submit_transaction(build(ledger, platform, seq + 1, ["1"], farmer))
        assert exc.value.result_code == "tx_bad_auth"

        envelope = build(ledger, platform, seq + 1, ["1"], farmer)
        result = await ledger.submit_transaction(sign(envelope, cosigner))
        assert len(created_balance_ids(result.result_xdr)) == 1
