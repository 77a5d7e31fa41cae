"""
farmescrow/__init__.py

FarmEscrow: two-party escrow settlement on the Stellar ledger.

Buyer funds are locked in a claimable balance with two claimants:
the farmer may claim at or before the deadline, the buyer strictly after.
The ledger evaluates the predicates and enforces the single claim.
"""

__version__ = "0.3.0"

from farmescrow.core.config import LedgerConfig
from farmescrow.core.crypto import Ed25519KeyManager
from farmescrow.core.exceptions import (
    ConfigurationError,
    ConflictError,
    EscrowError,
    InvalidPredicateError,
    LedgerError,
    LedgerQueryError,
    LedgerSubmissionError,
    NotFoundError,
    PredicateUnsatisfiedError,
    ValidationError,
)
from farmescrow.core.models import (
    EscrowReceipt,
    EscrowRequest,
    MultiSigRequest,
    RefundRequest,
    ReleaseRequest,
)
from farmescrow.escrow.engine import EscrowEngine
from farmescrow.escrow.predicates import build_escrow_predicates
from farmescrow.gateway.horizon import HorizonGateway
from farmescrow.gateway.memory import InMemoryLedger
from farmescrow.inspector.inspector import AccountInspector
from farmescrow.multisig.provisioner import MultiSigProvisioner
from farmescrow.service import SettlementService

__all__ = [
    # Entry points
    "SettlementService",
    "EscrowEngine",
    "MultiSigProvisioner",
    "AccountInspector",
    "LedgerConfig",
    # Gateways
    "HorizonGateway",
    "InMemoryLedger",
    # Requests / results
    "EscrowRequest",
    "ReleaseRequest",
    "RefundRequest",
    "MultiSigRequest",
    "EscrowReceipt",
    # Helpers
    "Ed25519KeyManager",
    "build_escrow_predicates",
    # Errors
    "EscrowError",
    "ValidationError",
    "InvalidPredicateError",
    "ConfigurationError",
    "NotFoundError",
    "ConflictError",
    "PredicateUnsatisfiedError",
    "LedgerError",
    "LedgerSubmissionError",
    "LedgerQueryError",
]
