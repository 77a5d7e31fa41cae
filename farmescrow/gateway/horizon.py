"""Ledger gateway backed by the Horizon REST API.

Reads are plain JSON GETs; submissions post the base64 XDR envelope to
/transactions, which blocks until the ledger closes or Horizon times out.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
from stellar_sdk import TransactionEnvelope

from farmescrow.core.config import LedgerConfig
from farmescrow.core.exceptions import (
    LedgerQueryError,
    LedgerSubmissionError,
    NotFoundError,
)
from farmescrow.core.models import (
    AccountSnapshot,
    Asset,
    BalanceOperation,
    ClaimableBalance,
    FeeStats,
    Signer,
    SubmissionResult,
    Thresholds,
    TransactionOutcome,
    TransactionStatus,
)
from farmescrow.core.transaction import ResultDecodeError, result_code

logger = logging.getLogger(__name__)

PAGE_LIMIT = 200


class HorizonGateway:
    """
    httpx-based LedgerGateway.

    Pass client to share a connection pool or to inject a mock transport;
    otherwise the gateway owns its client and close() releases it.
    """

    def __init__(self, config: LedgerConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.horizon_url,
            timeout=config.request_timeout,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HorizonGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Reads ─────────────────────────────────────────────────

    async def get_account(self, public_key: str) -> AccountSnapshot:
        data = await self._get(f"/accounts/{public_key}", what=f"account {public_key}")
        return _parse_account(data)

    async def get_fee_stats(self) -> FeeStats:
        data = await self._get("/fee_stats", what="fee stats")
        try:
            base_fee = int(data["last_ledger_base_fee"])
            mode_fee = int(data.get("fee_charged", {}).get("mode", base_fee))
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerQueryError(f"Malformed fee stats response: {exc}") from exc
        return FeeStats(base_fee=base_fee, mode_fee=mode_fee)

    async def get_transaction(self, transaction_hash: str) -> TransactionOutcome:
        data = await self._get(
            f"/transactions/{transaction_hash}", what=f"transaction {transaction_hash}"
        )
        successful = bool(data.get("successful"))
        return TransactionOutcome(
            status=TransactionStatus.SUCCESS if successful else TransactionStatus.FAILED,
            transaction_hash=data.get("hash", transaction_hash),
            ledger=data.get("ledger"),
            result_code=None if successful else _result_code(data.get("result_xdr")),
        )

    async def get_claimable_balances(self, claimant: str) -> List[ClaimableBalance]:
        records = await self._get_all(
            "/claimable_balances",
            params={"claimant": claimant, "limit": PAGE_LIMIT},
            what=f"claimable balances for {claimant}",
        )
        return [ClaimableBalance.from_dict(r) for r in records]

    async def get_claimable_balance(self, balance_id: str) -> ClaimableBalance:
        data = await self._get(
            f"/claimable_balances/{balance_id}", what=f"claimable balance {balance_id}"
        )
        return ClaimableBalance.from_dict(data)

    async def get_claimable_balance_operations(
        self, balance_id: str
    ) -> Tuple[BalanceOperation, ...]:
        try:
            records = await self._get_all(
                f"/claimable_balances/{balance_id}/operations",
                params={"limit": PAGE_LIMIT, "order": "asc"},
                what=f"operations for claimable balance {balance_id}",
            )
        except NotFoundError:
            return ()
        return tuple(BalanceOperation.from_dict(r) for r in records)

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/")
        except httpx.HTTPError as e:
            logger.error(f"Horizon unreachable at {self.config.horizon_url}: {e}")
            return False
        return response.status_code == 200

    # ── Submission ────────────────────────────────────────────

    async def submit_transaction(self, envelope: TransactionEnvelope) -> SubmissionResult:
        tx_hash = envelope.hash_hex()
        try:
            response = await self._client.post(
                "/transactions", data={"tx": envelope.to_xdr()}
            )
        except httpx.TimeoutException as e:
            logger.error(f"Submission of {tx_hash} timed out: {e}")
            raise LedgerSubmissionError(
                "Transaction submission timed out; outcome unknown",
                transaction_hash=tx_hash,
                status="pending",
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error submitting {tx_hash}: {e}")
            raise LedgerSubmissionError(
                f"Network error during submission: {e}",
                transaction_hash=tx_hash,
                status="pending",
            ) from e

        if response.status_code >= 500:
            raise LedgerSubmissionError(
                f"Horizon returned HTTP {response.status_code}; outcome unknown",
                transaction_hash=tx_hash,
                status="pending",
            )

        body = _json(response)
        if response.status_code == 200:
            return SubmissionResult(
                transaction_hash=body.get("hash", tx_hash),
                ledger=int(body.get("ledger", 0)),
                result_xdr=body.get("result_xdr", ""),
            )

        result_codes = body.get("extras", {}).get("result_codes", {})
        tx_code = result_codes.get("transaction")
        op_codes = tuple(result_codes.get("operations", ()))
        raise LedgerSubmissionError(
            body.get("title") or f"Transaction rejected with HTTP {response.status_code}",
            result_code=tx_code,
            operation_codes=op_codes,
            transaction_hash=tx_hash,
        )

    # ── HTTP helpers ──────────────────────────────────────────

    async def _get(self, path: str, what: str, params: Optional[dict] = None) -> Dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout fetching {what}: {e}")
            raise LedgerQueryError(f"Timed out fetching {what}", status="pending") from e
        except httpx.HTTPError as e:
            logger.error(f"HTTP error fetching {what}: {e}")
            raise LedgerQueryError(f"Network error fetching {what}: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Not found: {what}")
        if response.status_code >= 400:
            raise LedgerQueryError(
                f"Horizon returned HTTP {response.status_code} for {what}",
                details={"http_status": response.status_code},
            )
        return _json(response)

    async def _get_all(self, path: str, params: dict, what: str) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        page = await self._get(path, what=what, params=params)
        while True:
            batch = page.get("_embedded", {}).get("records", [])
            if not batch:
                return records
            records.extend(batch)
            next_href = page.get("_links", {}).get("next", {}).get("href")
            if not next_href or len(batch) < params.get("limit", PAGE_LIMIT):
                return records
            page = await self._get(next_href, what=what)


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise LedgerQueryError(f"Horizon returned non-JSON body: {e}") from e
    if not isinstance(data, dict):
        raise LedgerQueryError("Horizon returned an unexpected JSON shape")
    return data


def _parse_account(data: Dict[str, Any]) -> AccountSnapshot:
    balances: Dict[str, Decimal] = {}
    native = Decimal("0")
    for entry in data.get("balances", []):
        amount = Decimal(entry["balance"])
        if entry.get("asset_type") == "native":
            native = amount
            balances["native"] = amount
        else:
            asset = Asset(code=entry["asset_code"], issuer=entry["asset_issuer"])
            balances[asset.canonical()] = amount
    thresholds = data.get("thresholds", {})
    return AccountSnapshot(
        public_key=data.get("account_id", data.get("id")),
        balance=native,
        sequence=int(data["sequence"]),
        thresholds=Thresholds(
            low=int(thresholds.get("low_threshold", 0)),
            med=int(thresholds.get("med_threshold", 0)),
            high=int(thresholds.get("high_threshold", 0)),
        ),
        signers=tuple(
            Signer(key=s["key"], weight=int(s["weight"]), type=s.get("type", "ed25519_public_key"))
            for s in data.get("signers", [])
        ),
        balances=balances,
    )


def _result_code(result_xdr: Optional[str]) -> Optional[str]:
    if not result_xdr:
        return None
    try:
        return result_code(result_xdr)
    except ResultDecodeError:
        return None
