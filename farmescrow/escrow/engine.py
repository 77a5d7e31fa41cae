"""
farmescrow/escrow/engine.py

Escrow Engine: create, release, refund.

The ledger is the state machine. Per balance:

    Open --[farmer claims, t <= deadline]--> Claimed(farmer)
    Open --[buyer claims,  t >  deadline]--> Claimed(buyer)

No transition is reversible and the engine keeps no claim flag or cache.
It reads the balance right before building a claim (to avoid submitting a
transaction doomed to fail) and otherwise learns the outcome only from the
ledger's result codes.

Before building a claim the requester must hold the branch of its role:
farmer for release, buyer for refund (ValidationError otherwise).

Failure classification for claims:
    balance never existed                      → NotFoundError
    balance claimed by the requester           → ConflictError
    claimed by the other party, window lapsed  → PredicateUnsatisfiedError
    balance claimed otherwise                  → ConflictError
    op_cannot_claim                            → PredicateUnsatisfiedError
    op_does_not_exist (claimed concurrently)   → ConflictError
    other rejection, balance gone since        → as for a missing balance
    anything else                              → LedgerSubmissionError
"""

import logging
from typing import Optional

from farmescrow.core.canonical import escrow_terms_digest
from farmescrow.core.config import LedgerConfig
from farmescrow.core.crypto import Ed25519KeyManager, abbreviate, require_account_id
from farmescrow.core.exceptions import (
    ConflictError,
    EscrowError,
    LedgerSubmissionError,
    NotFoundError,
    PredicateUnsatisfiedError,
    ValidationError,
)
from farmescrow.core.models import (
    CLAIM_CLAIMABLE_BALANCE,
    MAX_INT64,
    Asset,
    ClaimableBalance,
    Claimant,
    ClaimPredicate,
    ClaimResult,
    EscrowReceipt,
    EscrowRequest,
    FeeStats,
    RefundRequest,
    ReleaseRequest,
    TransactionStatus,
    format_amount,
    parse_amount,
    require_balance_id,
)
from farmescrow.core.time import Clock, unix_now
from farmescrow.core.transaction import (
    ResultDecodeError,
    created_balance_ids,
    new_builder,
    sign,
    to_sdk_asset,
    to_sdk_claimant,
)
from farmescrow.escrow.predicates import EscrowBranch, branch_of, build_escrow_predicates
from farmescrow.gateway.base import LedgerGateway

logger = logging.getLogger(__name__)


class EscrowEngine:
    """
    Two-party escrow over ledger claimable balances.

    Args:
        gateway: LedgerGateway implementation.
        config:  Injected LedgerConfig. Creation needs the platform secret.
        clock:   Source of "now" for deadline validation.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        config: LedgerConfig,
        clock: Clock = unix_now,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._clock = clock

    # ─────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────

    async def create_escrow(self, request: EscrowRequest) -> EscrowReceipt:
        """
        Lock funds from the platform account in a two-claimant balance.

        Validation runs in a fixed order and completes before any network
        call: keys, amount, asset, deadline, order id.

        Raises:
            ValidationError:       malformed request
            ConfigurationError:    no platform secret configured
            LedgerSubmissionError: the ledger rejected the transaction
        """
        farmer = require_account_id(request.farmer_public_key, "farmer_public_key")
        buyer = require_account_id(request.buyer_public_key, "buyer_public_key")
        if farmer == buyer:
            raise ValidationError(
                "farmer and buyer must be different accounts", field="buyer_public_key"
            )
        amount = parse_amount(request.amount)
        asset = Asset.from_request(request.asset_code, request.asset_issuer)

        now = self._clock()
        deadline = request.deadline_unix_timestamp
        if isinstance(deadline, bool) or not isinstance(deadline, int):
            raise ValidationError(
                "deadline_unix_timestamp must be an integer",
                field="deadline_unix_timestamp",
            )
        if deadline <= now:
            raise ValidationError(
                "deadline_unix_timestamp must be in the future",
                field="deadline_unix_timestamp",
                details={"now": now, "deadline": deadline},
            )
        order_id = request.order_id
        if not isinstance(order_id, str) or not order_id.strip():
            raise ValidationError("order_id must be a non-empty string", field="order_id")

        predicates = build_escrow_predicates(deadline)
        platform = self._config.platform_key_manager()

        account = await self._gateway.get_account(platform.public_key)
        fee_stats = await self._gateway.get_fee_stats()

        amount_text = format_amount(amount)
        digest = escrow_terms_digest(
            farmer_public_key=farmer,
            buyer_public_key=buyer,
            amount=amount_text,
            asset=asset.canonical(),
            deadline_unix_timestamp=deadline,
            order_id=order_id,
        )
        builder = self._builder(platform.public_key, account.sequence, fee_stats, now)
        builder.append_create_claimable_balance_op(
            asset=to_sdk_asset(asset),
            amount=amount_text,
            claimants=[
                to_sdk_claimant(Claimant(farmer, predicates.farmer)),
                to_sdk_claimant(Claimant(buyer, predicates.buyer)),
            ],
        )
        builder.add_hash_memo(digest)
        envelope = sign(builder.build(), platform)

        result = await self._gateway.submit_transaction(envelope)
        balance_id = _created_balance_id(result.result_xdr, result.transaction_hash)

        logger.info(
            f"Escrow created: balance {balance_id[:16]}... order {order_id!r} "
            f"{amount_text} {asset.code} farmer {abbreviate(farmer)} "
            f"buyer {abbreviate(buyer)} deadline {deadline}"
        )
        return EscrowReceipt(
            balance_id=balance_id,
            transaction_hash=result.transaction_hash,
            amount=amount_text,
            asset_code=asset.code,
            farmer_public_key=farmer,
            buyer_public_key=buyer,
            deadline_unix_timestamp=deadline,
            order_id=order_id,
            ledger=result.ledger,
            terms_digest=digest.hex(),
        )

    # ─────────────────────────────────────────────────────────
    # Claims
    # ─────────────────────────────────────────────────────────

    async def release_payment(self, request: ReleaseRequest) -> ClaimResult:
        """Farmer claims the balance. Valid at or before the deadline."""
        return await self._claim(
            "farmer",
            request.balance_id,
            request.farmer_public_key,
            request.farmer_secret_key,
        )

    async def refund_escrow(self, request: RefundRequest) -> ClaimResult:
        """Buyer reclaims the balance. Valid strictly after the deadline."""
        return await self._claim(
            "buyer",
            request.balance_id,
            request.buyer_public_key,
            request.buyer_secret_key,
        )

    async def _claim(
        self,
        role: str,
        balance_id: str,
        public_key: str,
        secret_key: str,
    ) -> ClaimResult:
        balance_id = require_balance_id(balance_id)
        claimant = require_account_id(public_key, f"{role}_public_key")
        key = Ed25519KeyManager.from_secret(secret_key, f"{role}_secret_key")
        if not key.proves_ownership(claimant):
            raise ValidationError(
                f"{role}_secret_key does not control {role}_public_key",
                field=f"{role}_secret_key",
            )

        balance = await self._require_open(balance_id, claimant)
        _require_role(role, balance, claimant)

        account = await self._gateway.get_account(claimant)
        fee_stats = await self._gateway.get_fee_stats()
        builder = self._builder(claimant, account.sequence, fee_stats, self._clock())
        builder.append_claim_claimable_balance_op(balance_id)
        envelope = sign(builder.build(), key)

        try:
            result = await self._gateway.submit_transaction(envelope)
        except LedgerSubmissionError as exc:
            classified = _classify_claim_failure(exc, balance_id)
            if classified is exc and not exc.is_pending:
                classified = await self._explain_rejection(exc, balance_id, claimant)
            if classified is exc:
                raise
            logger.warning(
                f"{role.capitalize()} claim on {balance_id[:16]}... rejected: "
                f"{type(classified).__name__} {list(exc.operation_codes)}"
            )
            raise classified from exc

        logger.info(
            f"{role.capitalize()} claimed balance {balance_id[:16]}... "
            f"in ledger {result.ledger} ({abbreviate(claimant)})"
        )
        return ClaimResult(
            status=TransactionStatus.SUCCESS,
            transaction_hash=result.transaction_hash,
            balance_id=balance_id,
            ledger=result.ledger,
        )

    async def _require_open(self, balance_id: str, claimant: str) -> ClaimableBalance:
        try:
            return await self._gateway.get_claimable_balance(balance_id)
        except NotFoundError as exc:
            error = await self._missing_balance_error(balance_id, claimant)
            raise error from exc

    async def _explain_rejection(
        self, exc: LedgerSubmissionError, balance_id: str, claimant: str
    ) -> EscrowError:
        """A rejected claim whose balance has since vanished lost a race."""
        try:
            await self._gateway.get_claimable_balance(balance_id)
        except NotFoundError:
            return await self._missing_balance_error(balance_id, claimant)
        return exc

    async def _missing_balance_error(self, balance_id: str, claimant: str) -> EscrowError:
        """
        Explain a balance that is not open on the ledger.

        Claimed entries are removed from the ledger, so "already claimed" and
        "never existed" look alike until the operation history is consulted.
        """
        history = await self._gateway.get_claimable_balance_operations(balance_id)
        details = {"balance_id": balance_id}
        claims = [op for op in history if op.type == CLAIM_CLAIMABLE_BALANCE]
        if not claims:
            return NotFoundError(f"Claimable balance {balance_id} does not exist", details)
        if claims[-1].source_account == claimant:
            return ConflictError(
                f"Claimable balance {balance_id} was already claimed by this account", details
            )

        predicate = _claimant_predicate(history, claimant)
        if predicate is not None and _has_lapsed(predicate, self._clock()):
            return PredicateUnsatisfiedError(
                "Claim window for this claimant has closed", details
            )
        return ConflictError(f"Claimable balance {balance_id} was already claimed", details)

    # ─────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────

    def _builder(self, source: str, sequence: int, fee_stats: FeeStats, now: int):
        return new_builder(
            source=source,
            account_sequence=sequence,
            fee_per_operation=fee_stats.fee_per_operation(self._config.min_base_fee),
            network_passphrase=self._config.network_passphrase,
            now=now,
            timeout=self._config.transaction_timeout,
        )


def _created_balance_id(result_xdr: str, transaction_hash: str) -> str:
    try:
        balance_ids = created_balance_ids(result_xdr)
    except ResultDecodeError as exc:
        raise LedgerSubmissionError(
            f"Unreadable transaction result: {exc}",
            transaction_hash=transaction_hash,
            status="pending",
        ) from exc
    if not balance_ids:
        raise LedgerSubmissionError(
            "Transaction result carries no created balance id",
            transaction_hash=transaction_hash,
            status="pending",
        )
    return balance_ids[0]


def _classify_claim_failure(
    exc: LedgerSubmissionError, balance_id: str
) -> EscrowError:
    if exc.is_pending:
        return exc
    details = {"balance_id": balance_id, "transaction_hash": exc.transaction_hash}
    if "op_does_not_exist" in exc.operation_codes:
        # The balance was open when checked; another claim landed first.
        return ConflictError(f"Claimable balance {balance_id} was already claimed", details)
    if "op_cannot_claim" in exc.operation_codes:
        return PredicateUnsatisfiedError(
            "Claim attempted outside this claimant's time window", details
        )
    return exc


def _claimant_predicate(history, claimant: str) -> Optional[ClaimPredicate]:
    for op in history:
        for entry in op.claimants:
            if entry.destination == claimant:
                return entry.predicate
    return None


def _has_lapsed(predicate: ClaimPredicate, now: int) -> bool:
    """False now and false at every later close time."""
    return not predicate.is_satisfied(now) and not predicate.is_satisfied(MAX_INT64)


_ROLE_BRANCHES = {
    "farmer": EscrowBranch.FARMER_BEFORE_DEADLINE,
    "buyer":  EscrowBranch.BUYER_AFTER_DEADLINE,
}


def _require_role(role: str, balance: ClaimableBalance, claimant: str) -> None:
    """
    A release must go through the farmer branch and a refund through the
    buyer branch. Non-claimants are left to the ledger (op_cannot_claim).
    """
    entry = next((c for c in balance.claimants if c.destination == claimant), None)
    if entry is None:
        return
    if branch_of(entry.predicate) is not _ROLE_BRANCHES[role]:
        raise ValidationError(
            f"{role}_public_key is not the {role} of this escrow",
            field=f"{role}_public_key",
            details={"balance_id": balance.balance_id},
        )
