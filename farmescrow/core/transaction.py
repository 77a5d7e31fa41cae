"""
farmescrow/core/transaction.py

Bridge between the domain model and stellar_sdk transactions.

Envelopes are built with stellar_sdk's TransactionBuilder, signed with a
stellar_sdk Keypair and travel as base64 XDR. This module converts assets,
claim predicates and claimants in both directions and reads transaction
results.

Signing contract (stellar_sdk):
    transaction hash = SHA-256(SHA-256(passphrase) || ENVELOPE_TYPE_TX || xdr(tx))
    signature        = Ed25519(transaction hash)

Envelopes are only ever built with new_builder() and only ever signed with
sign().
"""

import struct
from typing import Iterable, List, Optional, Tuple

from stellar_sdk import Account
from stellar_sdk import Asset as SdkAsset
from stellar_sdk import ClaimClaimableBalance, CreateClaimableBalance, SetOptions
from stellar_sdk import Claimant as SdkClaimant
from stellar_sdk import ClaimPredicate as SdkClaimPredicate
from stellar_sdk import TransactionBuilder, TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr

from farmescrow.core.crypto import Ed25519KeyManager
from farmescrow.core.exceptions import InvalidPredicateError
from farmescrow.core.models import Asset, Claimant, ClaimPredicate, PredicateType

MAX_OPERATIONS = 100


class ResultDecodeError(ValueError):
    """Raised when a TransactionResult XDR string cannot be decoded."""


# ─────────────────────────────────────────────────────────────
# Building and signing
# ─────────────────────────────────────────────────────────────

def new_builder(
    source: str,
    account_sequence: int,
    fee_per_operation: int,
    network_passphrase: str,
    now: int,
    timeout: int,
) -> TransactionBuilder:
    """
    Start a transaction for source.

    The sequence number used is account_sequence + 1; the total fee is the
    per-operation fee times the number of operations. The transaction is
    valid until now + timeout.
    """
    return TransactionBuilder(
        source_account=Account(source, account_sequence),
        network_passphrase=network_passphrase,
        base_fee=fee_per_operation,
    ).add_time_bounds(0, now + timeout)


def sign(envelope: TransactionEnvelope, key_manager: Ed25519KeyManager) -> TransactionEnvelope:
    envelope.sign(key_manager.keypair)
    return envelope


def decode_envelope(envelope_xdr: str, network_passphrase: str) -> TransactionEnvelope:
    return TransactionEnvelope.from_xdr(envelope_xdr, network_passphrase)


def source_of(operation, default: str) -> str:
    """Account an operation runs as: its own source, else the transaction's."""
    return operation.source.account_id if operation.source is not None else default


# ─────────────────────────────────────────────────────────────
# Domain <-> stellar_sdk
# ─────────────────────────────────────────────────────────────

def to_sdk_asset(asset: Asset) -> SdkAsset:
    return SdkAsset.native() if asset.is_native else SdkAsset(asset.code, asset.issuer)


def from_sdk_asset(asset: SdkAsset) -> Asset:
    return Asset.native() if asset.is_native() else Asset(code=asset.code, issuer=asset.issuer)


def to_sdk_predicate(predicate: ClaimPredicate) -> SdkClaimPredicate:
    kind = predicate.type
    if kind == PredicateType.UNCONDITIONAL:
        return SdkClaimPredicate.predicate_unconditional()
    if kind == PredicateType.BEFORE_ABSOLUTE_TIME:
        return SdkClaimPredicate.predicate_before_absolute_time(predicate.time)
    if kind == PredicateType.BEFORE_RELATIVE_TIME:
        return SdkClaimPredicate.predicate_before_relative_time(predicate.time)
    if kind == PredicateType.NOT:
        return SdkClaimPredicate.predicate_not(to_sdk_predicate(predicate.children[0]))
    left, right = (to_sdk_predicate(c) for c in predicate.children)
    if kind == PredicateType.AND:
        return SdkClaimPredicate.predicate_and(left, right)
    if kind == PredicateType.OR:
        return SdkClaimPredicate.predicate_or(left, right)
    raise InvalidPredicateError(f"Unknown predicate type: {kind}")


def from_sdk_predicate(predicate: SdkClaimPredicate) -> ClaimPredicate:
    # stellar_sdk's ClaimPredicateType carries the ledger discriminants
    kind = PredicateType(int(predicate.claim_predicate_type))
    if kind == PredicateType.UNCONDITIONAL:
        return ClaimPredicate.unconditional()
    if kind == PredicateType.BEFORE_ABSOLUTE_TIME:
        return ClaimPredicate.before_absolute_time(predicate.abs_before)
    if kind == PredicateType.BEFORE_RELATIVE_TIME:
        return ClaimPredicate.before_relative_time(predicate.rel_before)
    if kind == PredicateType.NOT:
        return ClaimPredicate.not_(from_sdk_predicate(predicate.not_predicate))
    group = predicate.and_predicates if kind == PredicateType.AND else predicate.or_predicates
    left, right = from_sdk_predicate(group.left), from_sdk_predicate(group.right)
    if kind == PredicateType.AND:
        return ClaimPredicate.and_(left, right)
    return ClaimPredicate.or_(left, right)


def to_sdk_claimant(claimant: Claimant) -> SdkClaimant:
    return SdkClaimant(destination=claimant.destination, predicate=to_sdk_predicate(claimant.predicate))


def from_sdk_claimant(claimant: SdkClaimant) -> Claimant:
    return Claimant(claimant.destination, from_sdk_predicate(claimant.predicate))


# ─────────────────────────────────────────────────────────────
# Transaction results
# ─────────────────────────────────────────────────────────────

def _decode_result(result_xdr: str) -> stellar_xdr.TransactionResult:
    if not isinstance(result_xdr, str) or not result_xdr:
        raise ResultDecodeError("empty transaction result")
    try:
        return stellar_xdr.TransactionResult.from_xdr(result_xdr)
    except (ValueError, EOFError, IndexError, struct.error) as exc:
        raise ResultDecodeError(f"malformed transaction result: {exc}") from exc


def created_balance_ids(result_xdr: str) -> Tuple[str, ...]:
    """
    Ids of the claimable balances a successful transaction created.

    Horizon-style hex ids ("00000000" + 64 hex chars), in operation order.
    Returns () for failed transactions.
    """
    result = _decode_result(result_xdr).result
    if result.code != stellar_xdr.TransactionResultCode.txSUCCESS:
        return ()
    created = []
    for op_result in result.results or ():
        tr = op_result.tr
        if tr is None or tr.type != stellar_xdr.OperationType.CREATE_CLAIMABLE_BALANCE:
            continue
        outcome = tr.create_claimable_balance_result
        if outcome.code == stellar_xdr.CreateClaimableBalanceResultCode.CREATE_CLAIMABLE_BALANCE_SUCCESS:
            created.append(outcome.balance_id.to_xdr_bytes().hex())
    return tuple(created)


def result_code(result_xdr: str) -> str:
    """Transaction-level result code as Horizon spells it, e.g. "tx_bad_seq"."""
    name = _decode_result(result_xdr).result.code.name  # e.g. "txBAD_SEQ"
    return "tx_" + name[2:].lower()


def encode_success_result(
    fee_charged: int,
    operations: Iterable,
    created_ids: Iterable[Optional[str]],
) -> str:
    """
    Base64 TransactionResult for a transaction whose operations all succeeded.

    created_ids runs parallel to operations: the new balance id for each
    CreateClaimableBalance, None for the rest.
    """
    results: List[stellar_xdr.OperationResult] = []
    for op, balance_id in zip(operations, created_ids):
        results.append(stellar_xdr.OperationResult(
            code=stellar_xdr.OperationResultCode.opINNER,
            tr=_success_tr(op, balance_id),
        ))
    return stellar_xdr.TransactionResult(
        fee_charged=stellar_xdr.Int64(fee_charged),
        result=stellar_xdr.TransactionResultResult(
            code=stellar_xdr.TransactionResultCode.txSUCCESS,
            results=results,
        ),
        ext=stellar_xdr.TransactionResultExt(v=0),
    ).to_xdr()


def _success_tr(op, balance_id: Optional[str]) -> stellar_xdr.OperationResultTr:
    if isinstance(op, CreateClaimableBalance):
        return stellar_xdr.OperationResultTr(
            type=stellar_xdr.OperationType.CREATE_CLAIMABLE_BALANCE,
            create_claimable_balance_result=stellar_xdr.CreateClaimableBalanceResult(
                code=stellar_xdr.CreateClaimableBalanceResultCode.CREATE_CLAIMABLE_BALANCE_SUCCESS,
                balance_id=stellar_xdr.ClaimableBalanceID.from_xdr_bytes(bytes.fromhex(balance_id)),
            ),
        )
    if isinstance(op, ClaimClaimableBalance):
        return stellar_xdr.OperationResultTr(
            type=stellar_xdr.OperationType.CLAIM_CLAIMABLE_BALANCE,
            claim_claimable_balance_result=stellar_xdr.ClaimClaimableBalanceResult(
                code=stellar_xdr.ClaimClaimableBalanceResultCode.CLAIM_CLAIMABLE_BALANCE_SUCCESS,
            ),
        )
    if isinstance(op, SetOptions):
        return stellar_xdr.OperationResultTr(
            type=stellar_xdr.OperationType.SET_OPTIONS,
            set_options_result=stellar_xdr.SetOptionsResult(
                code=stellar_xdr.SetOptionsResultCode.SET_OPTIONS_SUCCESS,
            ),
        )
    raise ValueError(f"no result shape for {type(op).__name__}")
