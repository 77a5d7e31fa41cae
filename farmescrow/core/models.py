"""
farmescrow/core/models.py

Domain data model.

Records are frozen dataclasses. to_dict() yields the plain structured shape
handed to the transport layer; from_dict() where present reads Horizon JSON.

Amounts:
    Decimal, at most 7 fractional digits (1 stroop = 0.0000001),
    stroop count must fit a signed 64-bit integer.

Claim predicates:
    Ledger semantics. BEFORE_ABSOLUTE_TIME(t) holds iff close_time < t.
    BEFORE_RELATIVE_TIME(s) holds iff close_time < created_at + s.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from farmescrow.core.crypto import require_account_id
from farmescrow.core.exceptions import InvalidPredicateError, ValidationError
from farmescrow.core.time import from_rfc3339, to_rfc3339


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────

NATIVE_ASSET_CODE = "XLM"
STROOPS_PER_UNIT  = 10_000_000
AMOUNT_PRECISION  = 7
MAX_INT64         = 2**63 - 1

_ASSET_CODE_RE  = re.compile(r"^[A-Za-z0-9]{1,12}$")
_BALANCE_ID_RE  = re.compile(r"^00000000[0-9a-f]{64}$")
_TX_HASH_RE     = re.compile(r"^[0-9a-f]{64}$")

CREATE_CLAIMABLE_BALANCE = "create_claimable_balance"
CLAIM_CLAIMABLE_BALANCE  = "claim_claimable_balance"
SET_OPTIONS              = "set_options"


# ─────────────────────────────────────────────────────────────
# Amounts
# ─────────────────────────────────────────────────────────────

def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Parse a decimal-string amount.

    Raises ValidationError naming field_name if value is not a positive
    decimal representable in stroops.
    """
    if isinstance(value, bool) or not isinstance(value, (str, int, Decimal)):
        raise ValidationError(f"{field_name} must be a decimal string", field=field_name)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError(
            f"{field_name} is not a decimal number: {value!r}", field=field_name
        ) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be finite", field=field_name)
    if amount <= 0:
        raise ValidationError(f"{field_name} must be greater than zero", field=field_name)
    if -amount.normalize().as_tuple().exponent > AMOUNT_PRECISION:
        raise ValidationError(
            f"{field_name} supports at most {AMOUNT_PRECISION} decimal places",
            field=field_name,
        )
    if to_stroops(amount) > MAX_INT64:
        raise ValidationError(f"{field_name} exceeds the ledger maximum", field=field_name)
    return amount


def to_stroops(amount: Decimal) -> int:
    return int(amount * STROOPS_PER_UNIT)


def from_stroops(stroops: int) -> Decimal:
    return Decimal(stroops) / STROOPS_PER_UNIT


def format_amount(amount: Decimal) -> str:
    """Shortest plain decimal string: Decimal("10.5000000") → "10.5"."""
    text = f"{amount:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def require_balance_id(value: Any, field_name: str = "balance_id") -> str:
    if not isinstance(value, str) or not _BALANCE_ID_RE.match(value.lower()):
        raise ValidationError(
            f"{field_name} must be 72 hex characters with a 00000000 type prefix",
            field=field_name,
        )
    return value.lower()


def require_transaction_hash(value: Any, field_name: str = "transaction_hash") -> str:
    if not isinstance(value, str) or not _TX_HASH_RE.match(value.lower()):
        raise ValidationError(f"{field_name} must be 64 hex characters", field=field_name)
    return value.lower()


# ─────────────────────────────────────────────────────────────
# Assets
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Asset:
    """A ledger asset. issuer None means the native asset."""

    code: str = NATIVE_ASSET_CODE
    issuer: Optional[str] = None

    @staticmethod
    def native() -> "Asset":
        return Asset()

    @staticmethod
    def from_request(code: Optional[str], issuer: Optional[str]) -> "Asset":
        """
        Build an asset from optional request fields.

        No code (or "XLM" without issuer) selects the native asset.
        """
        if not code and not issuer:
            return Asset.native()
        if code == NATIVE_ASSET_CODE and not issuer:
            return Asset.native()
        if not code or not _ASSET_CODE_RE.match(code):
            raise ValidationError(
                "asset_code must be 1-12 alphanumeric characters", field="asset_code"
            )
        if not issuer:
            raise ValidationError(
                "asset_issuer is required for non-native assets", field="asset_issuer"
            )
        require_account_id(issuer, "asset_issuer")
        return Asset(code=code, issuer=issuer)

    @staticmethod
    def from_horizon(value: str) -> "Asset":
        if value == "native":
            return Asset.native()
        code, _, issuer = value.partition(":")
        return Asset(code=code, issuer=issuer)

    @property
    def is_native(self) -> bool:
        return self.issuer is None

    def canonical(self) -> str:
        """"native" or "CODE:ISSUER", as Horizon spells assets."""
        return "native" if self.is_native else f"{self.code}:{self.issuer}"


# ─────────────────────────────────────────────────────────────
# Claim predicates
# ─────────────────────────────────────────────────────────────

class PredicateType(Enum):
    UNCONDITIONAL        = 0
    AND                  = 1
    OR                   = 2
    NOT                  = 3
    BEFORE_ABSOLUTE_TIME = 4
    BEFORE_RELATIVE_TIME = 5


@dataclass(frozen=True)
class ClaimPredicate:
    """
    Tagged variant over the ledger's claim predicate shapes.

    Use the named constructors; they enforce arity and operand ranges.
    """

    type: PredicateType
    children: Tuple["ClaimPredicate", ...] = ()
    time: Optional[int] = None

    # ── Construction ──────────────────────────────────────────

    @staticmethod
    def unconditional() -> "ClaimPredicate":
        return ClaimPredicate(PredicateType.UNCONDITIONAL)

    @staticmethod
    def before_absolute_time(epoch_seconds: int) -> "ClaimPredicate":
        return ClaimPredicate(
            PredicateType.BEFORE_ABSOLUTE_TIME, time=_require_int64(epoch_seconds)
        )

    @staticmethod
    def before_relative_time(seconds: int) -> "ClaimPredicate":
        return ClaimPredicate(
            PredicateType.BEFORE_RELATIVE_TIME, time=_require_int64(seconds)
        )

    @staticmethod
    def not_(predicate: "ClaimPredicate") -> "ClaimPredicate":
        return ClaimPredicate(PredicateType.NOT, children=(predicate,))

    @staticmethod
    def and_(left: "ClaimPredicate", right: "ClaimPredicate") -> "ClaimPredicate":
        return ClaimPredicate(PredicateType.AND, children=(left, right))

    @staticmethod
    def or_(left: "ClaimPredicate", right: "ClaimPredicate") -> "ClaimPredicate":
        return ClaimPredicate(PredicateType.OR, children=(left, right))

    # ── Evaluation ────────────────────────────────────────────

    def is_satisfied(self, close_time: int, created_at: int = 0) -> bool:
        if self.type == PredicateType.UNCONDITIONAL:
            return True
        if self.type == PredicateType.BEFORE_ABSOLUTE_TIME:
            return close_time < self.time
        if self.type == PredicateType.BEFORE_RELATIVE_TIME:
            return close_time < created_at + self.time
        if self.type == PredicateType.NOT:
            return not self.children[0].is_satisfied(close_time, created_at)
        if self.type == PredicateType.AND:
            return all(c.is_satisfied(close_time, created_at) for c in self.children)
        if self.type == PredicateType.OR:
            return any(c.is_satisfied(close_time, created_at) for c in self.children)
        raise InvalidPredicateError(f"Unknown predicate type: {self.type}")

    # ── Horizon JSON ──────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        if self.type == PredicateType.UNCONDITIONAL:
            return {"unconditional": True}
        if self.type == PredicateType.BEFORE_ABSOLUTE_TIME:
            return {
                "abs_before": to_rfc3339(self.time),
                "abs_before_epoch": str(self.time),
            }
        if self.type == PredicateType.BEFORE_RELATIVE_TIME:
            return {"rel_before": str(self.time)}
        if self.type == PredicateType.NOT:
            return {"not": self.children[0].to_dict()}
        if self.type == PredicateType.AND:
            return {"and": [c.to_dict() for c in self.children]}
        if self.type == PredicateType.OR:
            return {"or": [c.to_dict() for c in self.children]}
        raise InvalidPredicateError(f"Unknown predicate type: {self.type}")

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ClaimPredicate":
        if data.get("unconditional"):
            return ClaimPredicate.unconditional()
        if "abs_before_epoch" in data:
            return ClaimPredicate.before_absolute_time(int(data["abs_before_epoch"]))
        if "abs_before" in data:
            return ClaimPredicate.before_absolute_time(from_rfc3339(data["abs_before"]))
        if "rel_before" in data:
            return ClaimPredicate.before_relative_time(int(data["rel_before"]))
        if "not" in data:
            return ClaimPredicate.not_(ClaimPredicate.from_dict(data["not"]))
        if "and" in data:
            left, right = data["and"]
            return ClaimPredicate.and_(
                ClaimPredicate.from_dict(left), ClaimPredicate.from_dict(right)
            )
        if "or" in data:
            left, right = data["or"]
            return ClaimPredicate.or_(
                ClaimPredicate.from_dict(left), ClaimPredicate.from_dict(right)
            )
        raise InvalidPredicateError(f"Unrecognised predicate: {data!r}")


def _require_int64(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPredicateError("predicate time must be an integer")
    if value < 0 or value > MAX_INT64:
        raise InvalidPredicateError("predicate time is out of range")
    return value


@dataclass(frozen=True)
class Claimant:
    destination: str
    predicate: ClaimPredicate

    def to_dict(self) -> Dict[str, Any]:
        return {"destination": self.destination, "predicate": self.predicate.to_dict()}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Claimant":
        return Claimant(
            destination=data["destination"],
            predicate=ClaimPredicate.from_dict(data["predicate"]),
        )


# ─────────────────────────────────────────────────────────────
# Ledger projections
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BalanceOperation:
    """
    One entry of a balance's operation history.

    source_account is the account the operation ran as: the creator for
    create_claimable_balance, the claimer for claim_claimable_balance.
    """

    type: str
    claimants: Tuple[Claimant, ...] = ()
    source_account: Optional[str] = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BalanceOperation":
        return BalanceOperation(
            type=data.get("type", ""),
            claimants=tuple(Claimant.from_dict(c) for c in data.get("claimants", [])),
            source_account=data.get("source_account"),
        )


class BalanceState(Enum):
    OPEN    = "open"
    CLAIMED = "claimed"


@dataclass(frozen=True)
class ClaimableBalance:
    balance_id: str
    asset: Asset
    amount: Decimal
    sponsor: Optional[str]
    claimants: Tuple[Claimant, ...]
    state: BalanceState = BalanceState.OPEN
    last_modified_ledger: Optional[int] = None

    def claimant_keys(self) -> Tuple[str, ...]:
        return tuple(c.destination for c in self.claimants)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.balance_id,
            "asset": self.asset.canonical(),
            "amount": format_amount(self.amount),
            "sponsor": self.sponsor,
            "claimants": [c.to_dict() for c in self.claimants],
            "state": self.state.value,
            "last_modified_ledger": self.last_modified_ledger,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ClaimableBalance":
        return ClaimableBalance(
            balance_id=data["id"],
            asset=Asset.from_horizon(data["asset"]),
            amount=Decimal(data["amount"]),
            sponsor=data.get("sponsor"),
            claimants=tuple(Claimant.from_dict(c) for c in data.get("claimants", [])),
            last_modified_ledger=data.get("last_modified_ledger"),
        )


@dataclass(frozen=True)
class Signer:
    key: str
    weight: int
    type: str = "ed25519_public_key"

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "weight": self.weight, "type": self.type}


@dataclass(frozen=True)
class Thresholds:
    low: int = 0
    med: int = 0
    high: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"low": self.low, "med": self.med, "high": self.high}


@dataclass(frozen=True)
class AccountSnapshot:
    """
    Read-only projection of an account. Never cache: sequence must be
    current when the next transaction is signed.
    """

    public_key: str
    balance: Decimal
    sequence: int
    thresholds: Thresholds
    signers: Tuple[Signer, ...]
    balances: Dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publicKey": self.public_key,
            "balance": format_amount(self.balance),
            "sequence": str(self.sequence),
            "thresholds": self.thresholds.to_dict(),
            "signers": [s.to_dict() for s in self.signers],
            "balances": {k: format_amount(v) for k, v in self.balances.items()},
        }


@dataclass(frozen=True)
class FeeStats:
    base_fee: int
    mode_fee: int

    def fee_per_operation(self, floor: int = 100) -> int:
        """Per-operation bid: the larger of base fee and recent mode, never under floor."""
        return max(self.base_fee, self.mode_fee, floor)


@dataclass(frozen=True)
class FeeEstimate:
    base_fee: int
    fee_per_operation: int
    estimated_total_fee: int
    current_network_fee: int
    operation_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseFee": self.base_fee,
            "feePerOperation": self.fee_per_operation,
            "estimatedTotalFee": self.estimated_total_fee,
            "estimatedTotalFeeXlm": format_amount(from_stroops(self.estimated_total_fee)),
            "currentNetworkFee": self.current_network_fee,
            "operationCount": self.operation_count,
        }


class TransactionStatus(Enum):
    SUCCESS = "success"
    FAILED  = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class TransactionOutcome:
    status: TransactionStatus
    transaction_hash: str
    ledger: Optional[int] = None
    result_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "transactionHash": self.transaction_hash,
            "ledger": self.ledger,
            "resultCode": self.result_code,
        }


@dataclass(frozen=True)
class SubmissionResult:
    transaction_hash: str
    ledger: int
    result_xdr: str


# ─────────────────────────────────────────────────────────────
# Requests
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EscrowRequest:
    farmer_public_key: str
    buyer_public_key: str
    amount: str
    deadline_unix_timestamp: int
    order_id: str
    asset_code: Optional[str] = None
    asset_issuer: Optional[str] = None


@dataclass(frozen=True)
class ReleaseRequest:
    balance_id: str
    farmer_public_key: str
    farmer_secret_key: str = field(repr=False)


@dataclass(frozen=True)
class RefundRequest:
    balance_id: str
    buyer_public_key: str
    buyer_secret_key: str = field(repr=False)


@dataclass(frozen=True)
class MultiSigRequest:
    primary_public_key: str
    cosigner_public_keys: Tuple[str, ...]
    threshold: int
    source_secret_key: str = field(repr=False)


# ─────────────────────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EscrowReceipt:
    balance_id: str
    transaction_hash: str
    amount: str
    asset_code: str
    farmer_public_key: str
    buyer_public_key: str
    deadline_unix_timestamp: int
    order_id: str
    ledger: Optional[int] = None
    terms_digest: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balanceId": self.balance_id,
            "transactionHash": self.transaction_hash,
            "amount": self.amount,
            "assetCode": self.asset_code,
            "farmerPublicKey": self.farmer_public_key,
            "buyerPublicKey": self.buyer_public_key,
            "deadlineUnixTimestamp": self.deadline_unix_timestamp,
            "orderId": self.order_id,
            "ledger": self.ledger,
            "termsDigest": self.terms_digest,
        }


@dataclass(frozen=True)
class ClaimResult:
    status: TransactionStatus
    transaction_hash: str
    balance_id: str
    ledger: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "transactionHash": self.transaction_hash,
            "balanceId": self.balance_id,
            "ledger": self.ledger,
        }


@dataclass(frozen=True)
class ProvisionResult:
    status: TransactionStatus
    transaction_hash: str
    threshold: int
    signers: Tuple[str, ...]
    ledger: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "transactionHash": self.transaction_hash,
            "threshold": self.threshold,
            "signers": list(self.signers),
            "ledger": self.ledger,
        }


def balances_to_dicts(balances: List[ClaimableBalance]) -> List[Dict[str, Any]]:
    return [b.to_dict() for b in balances]
