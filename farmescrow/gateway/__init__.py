"""
FarmEscrow Ledger Gateways

Everything that talks to the ledger goes through one of these.
"""

from farmescrow.gateway.base import LedgerGateway
from farmescrow.gateway.horizon import HorizonGateway
from farmescrow.gateway.memory import InMemoryLedger

__all__ = ["LedgerGateway", "HorizonGateway", "InMemoryLedger"]
