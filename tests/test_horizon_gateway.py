"""
tests/test_horizon_gateway.py

HorizonGateway against canned Horizon responses (httpx.MockTransport).
"""

import json

import httpx
import pytest
from stellar_sdk import xdr as stellar_xdr

from farmescrow.core.config import LedgerConfig
from farmescrow.core.exceptions import LedgerQueryError, LedgerSubmissionError, NotFoundError
from farmescrow.core.models import Asset, TransactionStatus
from farmescrow.core.transaction import encode_success_result, new_builder, sign
from farmescrow.gateway import horizon
from farmescrow.gateway.horizon import HorizonGateway

BASE_URL = "https://horizon.test"
BALANCE_ID = "00000000" + "ab" * 32


def gateway_for(handler):
    config = LedgerConfig(network="testnet", horizon_url=BASE_URL)
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HorizonGateway(config, client=client)


def signed_claim(farmer):
    config = LedgerConfig(network="testnet")
    builder = new_builder(farmer.public_key, 41, 100, config.network_passphrase, now=1_000, timeout=180)
    builder.append_claim_claimable_balance_op(BALANCE_ID)
    return sign(builder.build(), farmer)


def failed_result_xdr(code):
    return stellar_xdr.TransactionResult(
        fee_charged=stellar_xdr.Int64(100),
        result=stellar_xdr.TransactionResultResult(code=code, results=[]),
        ext=stellar_xdr.TransactionResultExt(v=0),
    ).to_xdr()


def balance_record(balance_id, farmer):
    return {
        "id": balance_id,
        "asset": "native",
        "amount": "10.0000000",
        "sponsor": farmer.public_key,
        "last_modified_ledger": 12,
        "claimants": [{"destination": farmer.public_key, "predicate": {"unconditional": True}}],
    }


class TestReads:

    @pytest.mark.asyncio
    async def test_account(self, farmer, buyer):
        issuer = buyer.public_key

        def handler(request):
            assert request.url.path == f"/accounts/{farmer.public_key}"
            return httpx.Response(200, json={
                "account_id": farmer.public_key,
                "sequence": "4294967296",
                "thresholds": {"low_threshold": 1, "med_threshold": 2, "high_threshold": 2},
                "signers": [{"key": farmer.public_key, "weight": 1, "type": "ed25519_public_key"}],
                "balances": [
                    {"asset_type": "credit_alphanum4", "asset_code": "USDC",
                     "asset_issuer": issuer, "balance": "12.5000000"},
                    {"asset_type": "native", "balance": "99.0000000"},
                ],
            })

        snapshot = await gateway_for(handler).get_account(farmer.public_key)
        assert snapshot.sequence == 4294967296
        assert str(snapshot.balance) == "99.0000000"
        assert snapshot.thresholds.med == 2
        assert snapshot.signers[0].key == farmer.public_key
        assert Asset("USDC", issuer).canonical() in snapshot.balances

    @pytest.mark.asyncio
    async def test_missing_account(self, farmer):
        gateway = gateway_for(lambda request: httpx.Response(404, json={"title": "Resource Missing"}))
        with pytest.raises(NotFoundError):
            await gateway.get_account(farmer.public_key)

    @pytest.mark.asyncio
    async def test_server_error_is_query_error(self):
        gateway = gateway_for(lambda request: httpx.Response(500, json={}))
        with pytest.raises(LedgerQueryError) as exc:
            await gateway.get_fee_stats()
        assert exc.value.details["http_status"] == 500

    @pytest.mark.asyncio
    async def test_read_timeout_is_pending(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(LedgerQueryError) as exc:
            await gateway_for(handler).get_fee_stats()
        assert exc.value.status == "pending"

    @pytest.mark.asyncio
    async def test_fee_stats(self):
        gateway = gateway_for(lambda request: httpx.Response(200, json={
            "last_ledger_base_fee": "100",
            "fee_charged": {"mode": "250", "max": "1000"},
        }))
        stats = await gateway.get_fee_stats()
        assert (stats.base_fee, stats.mode_fee) == (100, 250)

    @pytest.mark.asyncio
    async def test_malformed_fee_stats(self):
        gateway = gateway_for(lambda request: httpx.Response(200, json={"fee_charged": {}}))
        with pytest.raises(LedgerQueryError):
            await gateway.get_fee_stats()

    @pytest.mark.asyncio
    async def test_failed_transaction_lookup(self):
        tx_hash = "cd" * 32
        result_xdr = failed_result_xdr(stellar_xdr.TransactionResultCode.txFAILED)
        gateway = gateway_for(lambda request: httpx.Response(200, json={
            "hash": tx_hash, "ledger": 9, "successful": False, "result_xdr": result_xdr,
        }))
        outcome = await gateway.get_transaction(tx_hash)
        assert outcome.status == TransactionStatus.FAILED
        assert outcome.result_code == "tx_failed"
        assert outcome.ledger == 9

    @pytest.mark.asyncio
    async def test_balances_follow_paging(self, farmer, monkeypatch):
        monkeypatch.setattr(horizon, "PAGE_LIMIT", 2)
        ids = ["00000000" + f"{n:064x}" for n in range(3)]
        pages = {
            None: ([ids[0], ids[1]], f"{BASE_URL}/claimable_balances?cursor=page2&limit=2"),
            "page2": ([ids[2]], None),
        }

        def handler(request):
            assert request.url.params["limit"] == "2"
            batch, next_href = pages[request.url.params.get("cursor")]
            links = {"next": {"href": next_href}} if next_href else {}
            return httpx.Response(200, json={
                "_links": links,
                "_embedded": {"records": [balance_record(i, farmer) for i in batch]},
            })

        balances = await gateway_for(handler).get_claimable_balances(farmer.public_key)
        assert [b.balance_id for b in balances] == ids
        assert balances[0].claimant_keys() == (farmer.public_key,)

    @pytest.mark.asyncio
    async def test_operations_of_unknown_balance(self):
        gateway = gateway_for(lambda request: httpx.Response(404, json={}))
        assert await gateway.get_claimable_balance_operations(BALANCE_ID) == ()

    @pytest.mark.asyncio
    async def test_operations_carry_claimants(self, farmer):
        gateway = gateway_for(lambda request: httpx.Response(200, json={"_embedded": {"records": [
            {"type": "create_claimable_balance",
             "claimants": [{"destination": farmer.public_key,
                            "predicate": {"abs_before_epoch": "1760000001"}}]},
            {"type": "claim_claimable_balance", "source_account": farmer.public_key},
        ]}}))
        history = await gateway.get_claimable_balance_operations(BALANCE_ID)
        assert [op.type for op in history] == ["create_claimable_balance", "claim_claimable_balance"]
        assert history[0].claimants[0].predicate.time == 1760000001
        assert history[1].source_account == farmer.public_key

    @pytest.mark.asyncio
    async def test_undecodable_result_has_no_code(self):
        tx_hash = "ef" * 32
        gateway = gateway_for(lambda request: httpx.Response(200, json={
            "hash": tx_hash, "successful": False, "result_xdr": "AAAA",
        }))
        outcome = await gateway.get_transaction(tx_hash)
        assert outcome.status == TransactionStatus.FAILED
        assert outcome.result_code is None

    @pytest.mark.asyncio
    async def test_ping(self):
        assert await gateway_for(lambda request: httpx.Response(200, json={})).ping() is True
        assert await gateway_for(lambda request: httpx.Response(503, json={})).ping() is False

    @pytest.mark.asyncio
    async def test_ping_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await gateway_for(handler).ping() is False


class TestSubmission:

    @pytest.mark.asyncio
    async def test_success(self, farmer):
        envelope = signed_claim(farmer)
        result_xdr = encode_success_result(100, envelope.transaction.operations, [None])

        def handler(request):
            assert request.method == "POST"
            assert request.url.path == "/transactions"
            assert b"tx=" in request.content
            posted = httpx.QueryParams(request.content.decode())["tx"]
            assert posted == envelope.to_xdr()
            return httpx.Response(200, json={
                "hash": envelope.hash_hex(), "ledger": 77, "result_xdr": result_xdr,
            })

        result = await gateway_for(handler).submit_transaction(envelope)
        assert result.transaction_hash == envelope.hash_hex()
        assert result.ledger == 77

    @pytest.mark.asyncio
    async def test_rejection_carries_result_codes(self, farmer):
        envelope = signed_claim(farmer)
        body = {
            "title": "Transaction Failed",
            "extras": {"result_codes": {
                "transaction": "tx_failed", "operations": ["op_cannot_claim"],
            }},
        }
        gateway = gateway_for(lambda request: httpx.Response(400, content=json.dumps(body)))
        with pytest.raises(LedgerSubmissionError) as exc:
            await gateway.submit_transaction(envelope)
        assert exc.value.result_code == "tx_failed"
        assert exc.value.operation_codes == ("op_cannot_claim",)
        assert exc.value.transaction_hash == envelope.hash_hex()
        assert not exc.value.is_pending

    @pytest.mark.asyncio
    async def test_gateway_timeout_is_pending(self, farmer):
        envelope = signed_claim(farmer)
        gateway = gateway_for(lambda request: httpx.Response(504, json={}))
        with pytest.raises(LedgerSubmissionError) as exc:
            await gateway.submit_transaction(envelope)
        assert exc.value.is_pending
        assert exc.value.transaction_hash == envelope.hash_hex()

    @pytest.mark.asyncio
    async def test_client_timeout_is_pending(self, farmer):
        def handler(request):
            raise httpx.ReadTimeout("no answer", request=request)

        with pytest.raises(LedgerSubmissionError) as exc:
            await gateway_for(handler).submit_transaction(signed_claim(farmer))
        assert exc.value.is_pending
