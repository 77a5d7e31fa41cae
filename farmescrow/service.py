"""
farmescrow/service.py

SettlementService: the upstream-facing surface.

One object exposing every settlement operation, each taking a plain request
and returning a plain result or raising a typed EscrowError. A transport
layer maps EscrowError.http_status to its own status codes.

    async with SettlementService.from_config(LedgerConfig.from_env()) as svc:
        receipt = await svc.create_escrow(request)
        print(receipt.to_dict())
"""

from typing import List, Optional

import httpx

from farmescrow.core.config import LedgerConfig
from farmescrow.core.models import (
    AccountSnapshot,
    ClaimableBalance,
    ClaimResult,
    EscrowReceipt,
    EscrowRequest,
    FeeEstimate,
    MultiSigRequest,
    ProvisionResult,
    RefundRequest,
    ReleaseRequest,
    TransactionOutcome,
)
from farmescrow.core.time import Clock, unix_now
from farmescrow.escrow.engine import EscrowEngine
from farmescrow.gateway.base import LedgerGateway
from farmescrow.gateway.horizon import HorizonGateway
from farmescrow.inspector.inspector import AccountInspector
from farmescrow.multisig.provisioner import MultiSigProvisioner


class SettlementService:

    def __init__(
        self,
        gateway: LedgerGateway,
        config: LedgerConfig,
        clock: Clock = unix_now,
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.escrow = EscrowEngine(gateway, config, clock=clock)
        self.multisig = MultiSigProvisioner(gateway, config, clock=clock)
        self.inspector = AccountInspector(gateway, config)

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "SettlementService":
        """Service talking to the Horizon instance named in config."""
        return cls(HorizonGateway(config, client=client), config)

    async def close(self) -> None:
        close = getattr(self.gateway, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "SettlementService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Escrow ────────────────────────────────────────────────

    async def create_escrow(self, request: EscrowRequest) -> EscrowReceipt:
        return await self.escrow.create_escrow(request)

    async def release_payment(self, request: ReleaseRequest) -> ClaimResult:
        return await self.escrow.release_payment(request)

    async def refund_escrow(self, request: RefundRequest) -> ClaimResult:
        return await self.escrow.refund_escrow(request)

    # ── Accounts ──────────────────────────────────────────────

    async def setup_multisig_account(self, request: MultiSigRequest) -> ProvisionResult:
        return await self.multisig.setup_multisig_account(request)

    async def get_account_info(self, public_key: str) -> AccountSnapshot:
        return await self.inspector.get_account_info(public_key)

    async def get_claimable_balances(self, public_key: str) -> List[ClaimableBalance]:
        return await self.inspector.get_claimable_balances(public_key)

    # ── Network ───────────────────────────────────────────────

    async def estimate_fee(self, operation_count: int = 1) -> FeeEstimate:
        return await self.inspector.estimate_fee(operation_count)

    async def get_transaction_status(self, transaction_hash: str) -> TransactionOutcome:
        return await self.inspector.get_transaction_status(transaction_hash)

    async def verify_connection(self) -> bool:
        return await self.inspector.verify_connection()
