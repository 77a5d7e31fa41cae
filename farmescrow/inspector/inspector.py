"""
farmescrow/inspector/inspector.py

Read-only queries: accounts, fees, claimable balances, transactions.

Inputs are validated before any network call. Nothing is cached; every
call is a fresh ledger read.
"""

import logging
from typing import List

from farmescrow.core.config import LedgerConfig
from farmescrow.core.crypto import require_account_id
from farmescrow.core.exceptions import ValidationError
from farmescrow.core.models import (
    AccountSnapshot,
    ClaimableBalance,
    FeeEstimate,
    TransactionOutcome,
    require_transaction_hash,
)
from farmescrow.core.transaction import MAX_OPERATIONS
from farmescrow.gateway.base import LedgerGateway

logger = logging.getLogger(__name__)


class AccountInspector:

    def __init__(self, gateway: LedgerGateway, config: LedgerConfig) -> None:
        self._gateway = gateway
        self._config = config

    async def get_account_info(self, public_key: str) -> AccountSnapshot:
        """Raises ValidationError for malformed keys, NotFoundError if absent."""
        require_account_id(public_key, "public_key")
        return await self._gateway.get_account(public_key)

    async def estimate_fee(self, operation_count: int = 1) -> FeeEstimate:
        """
        Estimate the fee for a transaction of operation_count operations.

        The per-operation bid is the larger of the ledger base fee and the
        recent mode fee, never below the configured floor.
        """
        if isinstance(operation_count, bool) or not isinstance(operation_count, int):
            raise ValidationError("operation_count must be an integer", field="operation_count")
        if not 1 <= operation_count <= MAX_OPERATIONS:
            raise ValidationError(
                f"operation_count must be between 1 and {MAX_OPERATIONS}",
                field="operation_count",
            )
        stats = await self._gateway.get_fee_stats()
        per_operation = stats.fee_per_operation(self._config.min_base_fee)
        return FeeEstimate(
            base_fee=stats.base_fee,
            fee_per_operation=per_operation,
            estimated_total_fee=per_operation * operation_count,
            current_network_fee=stats.mode_fee,
            operation_count=operation_count,
        )

    async def get_claimable_balances(self, public_key: str) -> List[ClaimableBalance]:
        """Every open balance listing public_key as a claimant, in ledger order."""
        require_account_id(public_key, "public_key")
        return await self._gateway.get_claimable_balances(public_key)

    async def get_transaction_status(self, transaction_hash: str) -> TransactionOutcome:
        """Raises NotFoundError if the ledger has no record of the hash."""
        transaction_hash = require_transaction_hash(transaction_hash)
        return await self._gateway.get_transaction(transaction_hash)

    async def verify_connection(self) -> bool:
        reachable = await self._gateway.ping()
        if not reachable:
            logger.warning(f"Ledger at {self._config.horizon_url} is not reachable")
        return reachable
