"""
Ledger Gateway capability surface.

The settlement components depend only on this protocol. Envelope
serialization, transport, paging and timeouts are the gateway's concern.
"""

from typing import List, Protocol, Tuple

from stellar_sdk import TransactionEnvelope

from farmescrow.core.models import (
    AccountSnapshot,
    BalanceOperation,
    ClaimableBalance,
    FeeStats,
    SubmissionResult,
    TransactionOutcome,
)


class LedgerGateway(Protocol):
    async def get_account(self, public_key: str) -> AccountSnapshot:
        """Raises NotFoundError if the account does not exist."""
        ...

    async def get_fee_stats(self) -> FeeStats:
        ...

    async def submit_transaction(self, envelope: TransactionEnvelope) -> SubmissionResult:
        """
        Submit and wait for the ledger to close.

        Raises LedgerSubmissionError carrying the transaction and operation
        result codes; status "pending" when the outcome is unknown.
        """
        ...

    async def get_transaction(self, transaction_hash: str) -> TransactionOutcome:
        """Raises NotFoundError for unknown hashes."""
        ...

    async def get_claimable_balances(self, claimant: str) -> List[ClaimableBalance]:
        """All open balances listing claimant, in ledger order."""
        ...

    async def get_claimable_balance(self, balance_id: str) -> ClaimableBalance:
        """Raises NotFoundError if the balance is not open on the ledger."""
        ...

    async def get_claimable_balance_operations(
        self, balance_id: str
    ) -> Tuple[BalanceOperation, ...]:
        """
        Operations recorded against a balance id, oldest first. The balance
        outlives its ledger entry here: claimed balances keep their history.
        Empty when the ledger has never seen the id.
        """
        ...

    async def ping(self) -> bool:
        ...
