"""
farmescrow/gateway/memory.py

In-process simulated ledger.

Implements the LedgerGateway protocol against local state so the settlement
components can be exercised end to end without a network: tests, local
simulation, demos. Submitted envelopes are serialised to XDR and decoded
again under this ledger's passphrase; only what travels on the wire counts.

Simulated rules (the subset FarmEscrow relies on):
    - source account must exist; sequence must be current + 1
    - time bounds, fee floor (base fee x operation count)
    - signature weight vs thresholds: tx-level low, per operation
      create=medium, claim=low, set_options=high, all judged against the
      signer set as it stood before the transaction
    - fee and sequence are consumed even when operations fail
    - operations apply atomically: one failure discards the whole transaction
    - claim predicates evaluated against the close time; a claimed balance
      is removed, so a second claim sees op_does_not_exist

Submissions are serialised with an asyncio.Lock. Concurrent claims on one
balance therefore resolve exactly as on the real ledger: first wins.
"""

import asyncio
import copy
import hashlib
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

from stellar_sdk import ClaimClaimableBalance, CreateClaimableBalance, SetOptions, TransactionEnvelope

from farmescrow.core.config import LedgerConfig
from farmescrow.core.crypto import Ed25519KeyManager, decode_account_id
from farmescrow.core.exceptions import LedgerSubmissionError, NotFoundError
from farmescrow.core.models import (
    CLAIM_CLAIMABLE_BALANCE,
    CREATE_CLAIMABLE_BALANCE,
    AccountSnapshot,
    Asset,
    BalanceOperation,
    ClaimableBalance,
    Claimant,
    FeeStats,
    Signer,
    SubmissionResult,
    Thresholds,
    TransactionOutcome,
    TransactionStatus,
    from_stroops,
    to_stroops,
)
from farmescrow.core.time import Clock, unix_now
from farmescrow.core.transaction import (
    decode_envelope,
    encode_success_result,
    from_sdk_asset,
    from_sdk_claimant,
    source_of,
)

logger = logging.getLogger(__name__)

MAX_SIGNERS = 20
MAX_CLAIMANTS = 10


class _OperationFailed(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass
class _AccountEntry:
    public_key: str
    sequence: int
    balances: Dict[str, int]
    master_weight: int = 1
    signers: Dict[str, int] = field(default_factory=dict)
    low: int = 0
    med: int = 0
    high: int = 0

    def signer_weights(self) -> Dict[str, int]:
        weights = dict(self.signers)
        if self.master_weight > 0:
            weights[self.public_key] = self.master_weight
        return weights

    def snapshot(self) -> AccountSnapshot:
        signers = [Signer(key=k, weight=w) for k, w in self.signers.items()]
        signers.append(Signer(key=self.public_key, weight=self.master_weight))
        return AccountSnapshot(
            public_key=self.public_key,
            balance=from_stroops(self.balances.get("native", 0)),
            sequence=self.sequence,
            thresholds=Thresholds(low=self.low, med=self.med, high=self.high),
            signers=tuple(signers),
            balances={k: from_stroops(v) for k, v in self.balances.items()},
        )


@dataclass
class _BalanceEntry:
    balance_id: str
    asset: Asset
    stroops: int
    sponsor: str
    claimants: Tuple[Claimant, ...]
    created_at: int
    ledger: int

    def view(self) -> ClaimableBalance:
        return ClaimableBalance(
            balance_id=self.balance_id,
            asset=self.asset,
            amount=from_stroops(self.stroops),
            sponsor=self.sponsor,
            claimants=self.claimants,
            last_modified_ledger=self.ledger,
        )


class InMemoryLedger:
    """
    Simulated LedgerGateway.

    Args:
        network_passphrase: Must match the passphrase envelopes are signed for.
        clock:              Close-time source. Inject a controllable clock in tests.
        base_fee:           Per-operation fee floor, in stroops.
        mode_fee:           Reported "current network fee"; defaults to base_fee.
        latency:            Seconds each submission waits before reaching the
                            ledger, to let concurrent callers interleave.
    """

    def __init__(
        self,
        network_passphrase: str,
        clock: Clock = unix_now,
        base_fee: int = 100,
        mode_fee: Optional[int] = None,
        latency: float = 0.0,
    ) -> None:
        self.network_passphrase = network_passphrase
        self.reachable = True
        self.submitted: List[TransactionEnvelope] = []

        self._clock = clock
        self._base_fee = base_fee
        self._mode_fee = mode_fee if mode_fee is not None else base_fee
        self._latency = latency
        self._lock = asyncio.Lock()
        self._ledger_sequence = 2
        self._accounts: Dict[str, _AccountEntry] = {}
        self._balances: Dict[str, _BalanceEntry] = {}
        self._balance_history: Dict[str, List[BalanceOperation]] = {}
        self._transactions: Dict[str, TransactionOutcome] = {}

    @classmethod
    def for_config(cls, config: LedgerConfig, **kwargs) -> "InMemoryLedger":
        return cls(network_passphrase=config.network_passphrase, **kwargs)

    # ── Setup (friendbot equivalent) ──────────────────────────

    def create_account(self, public_key: str, starting_balance: str = "10000") -> None:
        if public_key in self._accounts:
            raise ValueError(f"account already exists: {public_key}")
        self._accounts[public_key] = _AccountEntry(
            public_key=public_key,
            sequence=self._ledger_sequence << 32,
            balances={"native": to_stroops(Decimal(starting_balance))},
        )

    def add_trustline(self, public_key: str, asset: Asset, amount: str = "0") -> None:
        self._account(public_key).balances[asset.canonical()] = to_stroops(Decimal(amount))

    # ── LedgerGateway: reads ──────────────────────────────────

    async def get_account(self, public_key: str) -> AccountSnapshot:
        return self._account(public_key).snapshot()

    async def get_fee_stats(self) -> FeeStats:
        return FeeStats(base_fee=self._base_fee, mode_fee=self._mode_fee)

    async def get_transaction(self, transaction_hash: str) -> TransactionOutcome:
        try:
            return self._transactions[transaction_hash]
        except KeyError:
            raise NotFoundError(f"Not found: transaction {transaction_hash}") from None

    async def get_claimable_balances(self, claimant: str) -> List[ClaimableBalance]:
        return [
            entry.view()
            for entry in self._balances.values()
            if any(c.destination == claimant for c in entry.claimants)
        ]

    async def get_claimable_balance(self, balance_id: str) -> ClaimableBalance:
        try:
            return self._balances[balance_id].view()
        except KeyError:
            raise NotFoundError(f"Not found: claimable balance {balance_id}") from None

    async def get_claimable_balance_operations(
        self, balance_id: str
    ) -> Tuple[BalanceOperation, ...]:
        return tuple(self._balance_history.get(balance_id, ()))

    async def ping(self) -> bool:
        return self.reachable

    # ── LedgerGateway: submission ─────────────────────────────

    async def submit_transaction(self, envelope: TransactionEnvelope) -> SubmissionResult:
        self.submitted.append(envelope)
        if self._latency:
            await asyncio.sleep(self._latency)
        async with self._lock:
            return self._apply(envelope)

    def _apply(self, envelope: TransactionEnvelope) -> SubmissionResult:
        wire = decode_envelope(envelope.to_xdr(), self.network_passphrase)
        tx = wire.transaction
        tx_source = tx.source.account_id
        tx_hash = wire.hash_hex()
        close_time = self._clock()

        source = self._accounts.get(tx_source)
        if source is None:
            self._reject(tx_hash, "tx_no_source_account", record=False)
        if not tx.operations:
            self._reject(tx_hash, "tx_missing_operation", record=False)
        bounds = tx.preconditions.time_bounds if tx.preconditions is not None else None
        if bounds is not None:
            if close_time < bounds.min_time:
                self._reject(tx_hash, "tx_too_early", record=False)
            if bounds.max_time and close_time > bounds.max_time:
                self._reject(tx_hash, "tx_too_late", record=False)
        if tx.fee < self._base_fee * len(tx.operations):
            self._reject(tx_hash, "tx_insufficient_fee", record=False)
        if tx.sequence != source.sequence + 1:
            self._reject(tx_hash, "tx_bad_seq", record=False)

        signed = self._signed_keys(wire, tx_hash)
        if not _authorized(source, signed, source.low):
            self._reject(tx_hash, "tx_bad_auth", record=False)
        if source.balances.get("native", 0) < tx.fee:
            self._reject(tx_hash, "tx_insufficient_balance", record=False)

        # From here on the transaction is valid: fee and sequence are consumed.
        source.balances["native"] -= tx.fee
        source.sequence = tx.sequence
        self._ledger_sequence += 1
        ledger = self._ledger_sequence

        accounts = copy.deepcopy(self._accounts)
        balances = dict(self._balances)
        history = {k: list(v) for k, v in self._balance_history.items()}
        created_ids: List[Optional[str]] = []
        op_codes: List[str] = []
        failed = False
        for index, op in enumerate(tx.operations):
            try:
                balance_id = self._apply_operation(
                    op, index, tx_source, tx_hash, signed, close_time, ledger,
                    accounts, balances, history,
                )
            except _OperationFailed as exc:
                failed = True
                op_codes.append(exc.code)
                created_ids.append(None)
            else:
                op_codes.append("op_success")
                created_ids.append(balance_id)

        if failed:
            logger.info(f"Simulated ledger {ledger}: {tx_hash[:12]} failed {op_codes}")
            self._reject(tx_hash, "tx_failed", op_codes=op_codes, ledger=ledger)

        self._accounts = accounts
        self._balances = balances
        self._balance_history = history

        result_xdr = encode_success_result(tx.fee, tx.operations, created_ids)
        self._transactions[tx_hash] = TransactionOutcome(
            status=TransactionStatus.SUCCESS,
            transaction_hash=tx_hash,
            ledger=ledger,
        )
        logger.info(f"Simulated ledger {ledger}: applied {tx_hash[:12]}")
        return SubmissionResult(transaction_hash=tx_hash, ledger=ledger, result_xdr=result_xdr)

    def _reject(
        self,
        tx_hash: str,
        code: str,
        op_codes: Optional[List[str]] = None,
        ledger: Optional[int] = None,
        record: bool = True,
    ) -> None:
        if record:
            self._transactions[tx_hash] = TransactionOutcome(
                status=TransactionStatus.FAILED,
                transaction_hash=tx_hash,
                ledger=ledger,
                result_code=code,
            )
        raise LedgerSubmissionError(
            "Transaction Failed",
            result_code=code,
            operation_codes=op_codes or (),
            transaction_hash=tx_hash,
        )

    def _signed_keys(self, envelope: TransactionEnvelope, tx_hash: str) -> Set[str]:
        """Keys whose signatures over the transaction hash verify."""
        candidates: Set[str] = set()
        for entry in self._accounts.values():
            candidates.update(entry.signer_weights())
        digest = bytes.fromhex(tx_hash)
        signed = set()
        for decorated in envelope.signatures:
            for key in candidates:
                if key in signed:
                    continue
                if _hint(key) != decorated.signature_hint:
                    continue
                if Ed25519KeyManager.verify_detached(digest, decorated.signature, key):
                    signed.add(key)
        return signed

    # ── Operations ────────────────────────────────────────────

    def _apply_operation(
        self,
        op,
        index: int,
        tx_source: str,
        tx_hash: str,
        signed: Set[str],
        close_time: int,
        ledger: int,
        accounts: Dict[str, _AccountEntry],
        balances: Dict[str, _BalanceEntry],
        history: Dict[str, List[BalanceOperation]],
    ) -> Optional[str]:
        op_source = source_of(op, tx_source)
        account = accounts.get(op_source)
        # Signatures are weighed against the pre-transaction signer set.
        authority = self._accounts.get(op_source)
        if account is None or authority is None:
            raise _OperationFailed("op_no_source_account")

        if isinstance(op, CreateClaimableBalance):
            if not _authorized(authority, signed, authority.med):
                raise _OperationFailed("op_bad_auth")
            return self._create_balance(op, index, account, tx_hash, close_time, ledger,
                                        balances, history)
        if isinstance(op, ClaimClaimableBalance):
            if not _authorized(authority, signed, authority.low):
                raise _OperationFailed("op_bad_auth")
            self._claim_balance(op, account, close_time, balances, history)
            return None
        if isinstance(op, SetOptions):
            if not _authorized(authority, signed, authority.high):
                raise _OperationFailed("op_bad_auth")
            self._set_options(op, account)
            return None
        raise _OperationFailed("op_not_supported")

    def _create_balance(
        self,
        op: CreateClaimableBalance,
        index: int,
        account: _AccountEntry,
        tx_hash: str,
        close_time: int,
        ledger: int,
        balances: Dict[str, _BalanceEntry],
        history: Dict[str, List[BalanceOperation]],
    ) -> str:
        asset = from_sdk_asset(op.asset)
        stroops = to_stroops(Decimal(op.amount))
        claimants = tuple(from_sdk_claimant(c) for c in op.claimants)
        destinations = [c.destination for c in claimants]
        if stroops <= 0 or not destinations or len(destinations) > MAX_CLAIMANTS:
            raise _OperationFailed("op_malformed")
        if len(set(destinations)) != len(destinations):
            raise _OperationFailed("op_malformed")

        asset_key = asset.canonical()
        if asset.issuer != account.public_key:
            if asset_key not in account.balances:
                raise _OperationFailed("op_no_trust")
            if account.balances[asset_key] < stroops:
                raise _OperationFailed("op_underfunded")
            account.balances[asset_key] -= stroops

        seed = bytes.fromhex(tx_hash) + index.to_bytes(4, "big")
        balance_id = "00000000" + hashlib.sha256(seed).hexdigest()
        balances[balance_id] = _BalanceEntry(
            balance_id=balance_id,
            asset=asset,
            stroops=stroops,
            sponsor=account.public_key,
            claimants=claimants,
            created_at=close_time,
            ledger=ledger,
        )
        history[balance_id] = [
            BalanceOperation(CREATE_CLAIMABLE_BALANCE, claimants, account.public_key)
        ]
        return balance_id

    def _claim_balance(
        self,
        op: ClaimClaimableBalance,
        account: _AccountEntry,
        close_time: int,
        balances: Dict[str, _BalanceEntry],
        history: Dict[str, List[BalanceOperation]],
    ) -> None:
        balance_id = op.balance_id.lower()
        entry = balances.get(balance_id)
        if entry is None:
            raise _OperationFailed("op_does_not_exist")
        claimant = next(
            (c for c in entry.claimants if c.destination == account.public_key), None
        )
        if claimant is None:
            raise _OperationFailed("op_cannot_claim")
        if not claimant.predicate.is_satisfied(close_time, entry.created_at):
            raise _OperationFailed("op_cannot_claim")

        asset_key = entry.asset.canonical()
        if entry.asset.issuer != account.public_key:
            if asset_key not in account.balances:
                raise _OperationFailed("op_no_trust")
            account.balances[asset_key] += entry.stroops

        del balances[balance_id]
        history[balance_id].append(
            BalanceOperation(CLAIM_CLAIMABLE_BALANCE, source_account=account.public_key)
        )

    def _set_options(self, op: SetOptions, account: _AccountEntry) -> None:
        for value in (op.master_weight, op.low_threshold, op.med_threshold, op.high_threshold):
            if value is not None and not 0 <= value <= 255:
                raise _OperationFailed("op_threshold_out_of_range")
        if op.signer is not None:
            key = op.signer.signer_key.encoded_signer_key
            weight = op.signer.weight
            if key == account.public_key or not 0 <= weight <= 255:
                raise _OperationFailed("op_bad_signer")
            if weight == 0:
                account.signers.pop(key, None)
            else:
                if key not in account.signers and len(account.signers) >= MAX_SIGNERS:
                    raise _OperationFailed("op_too_many_signers")
                account.signers[key] = weight
        if op.master_weight is not None:
            account.master_weight = op.master_weight
        if op.low_threshold is not None:
            account.low = op.low_threshold
        if op.med_threshold is not None:
            account.med = op.med_threshold
        if op.high_threshold is not None:
            account.high = op.high_threshold

    def _account(self, public_key: str) -> _AccountEntry:
        try:
            return self._accounts[public_key]
        except KeyError:
            raise NotFoundError(f"Not found: account {public_key}") from None


def _authorized(account: _AccountEntry, signed: Set[str], threshold: int) -> bool:
    weight = sum(w for key, w in account.signer_weights().items() if key in signed)
    return weight > 0 and weight >= threshold


def _hint(address: str) -> bytes:
    return decode_account_id(address)[-4:]
