"""
FarmEscrow Escrow - claimable-balance escrow with deadline predicates
"""

from farmescrow.escrow.engine import EscrowEngine
from farmescrow.escrow.predicates import (
    EscrowBranch,
    EscrowPredicates,
    branch_predicate,
    build_escrow_predicates,
)

__all__ = [
    "EscrowEngine",
    "EscrowBranch",
    "EscrowPredicates",
    "branch_predicate",
    "build_escrow_predicates",
]
