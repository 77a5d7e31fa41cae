"""
farmescrow/escrow/predicates.py

Two-branch escrow predicates.

An escrow has exactly two claimants, each gated by one of two shapes:

    FARMER_BEFORE_DEADLINE   BEFORE_ABSOLUTE_TIME(deadline + 1)
                             holds for every close time <= deadline
    BUYER_AFTER_DEADLINE     NOT(BEFORE_ABSOLUTE_TIME(deadline + 1))
                             holds for every close time >  deadline

The ledger's BEFORE_ABSOLUTE_TIME is strict (close_time < t), hence the +1:
the boundary instant belongs to the farmer. At any instant exactly one
branch holds.

Only these two shapes are ever built. Adding a third branch means adding
it to EscrowBranch, branch_predicate() and branch_of(), nowhere else.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from farmescrow.core.exceptions import InvalidPredicateError
from farmescrow.core.models import MAX_INT64, ClaimPredicate, PredicateType

# deadline + 1 must still fit the ledger's int64 time field
MAX_DEADLINE = MAX_INT64 - 1


class EscrowBranch(Enum):
    FARMER_BEFORE_DEADLINE = "farmer_before_deadline"
    BUYER_AFTER_DEADLINE   = "buyer_after_deadline"


@dataclass(frozen=True)
class EscrowPredicates:
    farmer: ClaimPredicate
    buyer: ClaimPredicate


def _require_deadline(deadline: Any) -> int:
    if isinstance(deadline, bool) or not isinstance(deadline, int):
        raise InvalidPredicateError(
            "deadline must be an integer Unix timestamp",
            field="deadline_unix_timestamp",
        )
    if not 1 <= deadline <= MAX_DEADLINE:
        raise InvalidPredicateError(
            f"deadline must be between 1 and {MAX_DEADLINE}",
            field="deadline_unix_timestamp",
            details={"deadline": deadline},
        )
    return deadline


def branch_predicate(branch: EscrowBranch, deadline: int) -> ClaimPredicate:
    """Predicate gating one branch. Rejects anything but the two known branches."""
    deadline = _require_deadline(deadline)
    cutoff = ClaimPredicate.before_absolute_time(deadline + 1)
    if branch is EscrowBranch.FARMER_BEFORE_DEADLINE:
        return cutoff
    if branch is EscrowBranch.BUYER_AFTER_DEADLINE:
        return ClaimPredicate.not_(cutoff)
    raise InvalidPredicateError(f"Unsupported escrow branch: {branch!r}")


def build_escrow_predicates(deadline: int) -> EscrowPredicates:
    """
    Build the farmer/buyer predicate pair for a deadline.

    Pure. Does not check that the deadline is in the future; the engine
    does that against its clock.

    Raises:
        InvalidPredicateError: deadline not an int in [1, 2**63 - 2]
    """
    return EscrowPredicates(
        farmer=branch_predicate(EscrowBranch.FARMER_BEFORE_DEADLINE, deadline),
        buyer=branch_predicate(EscrowBranch.BUYER_AFTER_DEADLINE, deadline),
    )


def branch_of(predicate: ClaimPredicate) -> Optional[EscrowBranch]:
    """Which escrow branch predicate gates, or None for any other shape."""
    if predicate.type is PredicateType.BEFORE_ABSOLUTE_TIME:
        return EscrowBranch.FARMER_BEFORE_DEADLINE
    if (
        predicate.type is PredicateType.NOT
        and predicate.children[0].type is PredicateType.BEFORE_ABSOLUTE_TIME
    ):
        return EscrowBranch.BUYER_AFTER_DEADLINE
    return None
