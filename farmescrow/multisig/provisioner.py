"""
farmescrow/multisig/provisioner.py

MultiSig Provisioner.

Installs N cosigners (weight 1 each) on an account and raises all three
thresholds to the requested value, in ONE transaction:

    SetOptions(signer=cosigner_1, weight=1)
    ...
    SetOptions(signer=cosigner_N, weight=1)
    SetOptions(master_weight=1, low=med=high=threshold)

The ledger checks every operation's signatures against the account as it
stood before the transaction, so the master key alone authorises the whole
batch whatever the operation order. Atomicity is the ledger's: if any
operation fails, no partial signer set is installed.

Medium is the threshold subsequent payment operations are checked against.
"""

import logging
from typing import List

from farmescrow.core.config import LedgerConfig
from farmescrow.core.crypto import Ed25519KeyManager, abbreviate, require_account_id
from farmescrow.core.exceptions import ValidationError
from farmescrow.core.models import MultiSigRequest, ProvisionResult, TransactionStatus
from farmescrow.core.time import Clock, unix_now
from farmescrow.core.transaction import new_builder, sign
from farmescrow.gateway.base import LedgerGateway

logger = logging.getLogger(__name__)

MAX_COSIGNERS = 20
MAX_THRESHOLD = 255
COSIGNER_WEIGHT = 1
MASTER_WEIGHT = 1


class MultiSigProvisioner:

    def __init__(
        self,
        gateway: LedgerGateway,
        config: LedgerConfig,
        clock: Clock = unix_now,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._clock = clock

    async def setup_multisig_account(self, request: MultiSigRequest) -> ProvisionResult:
        """
        Provision an M-of-N account.

        Every check below completes before the first network call, so an
        infeasible request never reaches the ledger.

        Raises:
            ValidationError:       malformed keys, duplicate cosigners, or a
                                   threshold the signer set cannot reach
            LedgerSubmissionError: the ledger rejected the transaction
        """
        primary = require_account_id(request.primary_public_key, "primary_public_key")
        cosigners = _validate_cosigners(primary, request.cosigner_public_keys)
        threshold = _validate_threshold(request.threshold, len(cosigners))

        key = Ed25519KeyManager.from_secret(request.source_secret_key, "source_secret_key")
        if not key.proves_ownership(primary):
            raise ValidationError(
                "source_secret_key does not control primary_public_key",
                field="source_secret_key",
            )

        account = await self._gateway.get_account(primary)
        fee_stats = await self._gateway.get_fee_stats()

        builder = new_builder(
            source=primary,
            account_sequence=account.sequence,
            fee_per_operation=fee_stats.fee_per_operation(self._config.min_base_fee),
            network_passphrase=self._config.network_passphrase,
            now=self._clock(),
            timeout=self._config.transaction_timeout,
        )
        for cosigner in cosigners:
            builder.append_ed25519_public_key_signer(cosigner, COSIGNER_WEIGHT)
        builder.append_set_options_op(
            master_weight=MASTER_WEIGHT,
            low_threshold=threshold,
            med_threshold=threshold,
            high_threshold=threshold,
        )
        envelope = sign(builder.build(), key)

        result = await self._gateway.submit_transaction(envelope)
        logger.info(
            f"Multisig installed on {abbreviate(primary)}: "
            f"{threshold}-of-{len(cosigners) + 1} in ledger {result.ledger}"
        )
        return ProvisionResult(
            status=TransactionStatus.SUCCESS,
            transaction_hash=result.transaction_hash,
            threshold=threshold,
            signers=(primary,) + tuple(cosigners),
            ledger=result.ledger,
        )


def _validate_cosigners(primary: str, cosigner_keys) -> List[str]:
    if isinstance(cosigner_keys, str):
        raise ValidationError(
            "cosigner_public_keys must be a list of addresses", field="cosigner_public_keys"
        )
    cosigners = []
    for index, key in enumerate(cosigner_keys):
        cosigners.append(require_account_id(key, f"cosigner_public_keys[{index}]"))
    if len(cosigners) > MAX_COSIGNERS:
        raise ValidationError(
            f"at most {MAX_COSIGNERS} cosigners are supported", field="cosigner_public_keys"
        )
    if len(set(cosigners)) != len(cosigners):
        raise ValidationError("cosigner_public_keys contains duplicates", field="cosigner_public_keys")
    if primary in cosigners:
        raise ValidationError(
            "primary_public_key cannot also be a cosigner", field="cosigner_public_keys"
        )
    return cosigners


def _validate_threshold(threshold, cosigner_count: int) -> int:
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValidationError("threshold must be an integer", field="threshold")
    if not 1 <= threshold <= MAX_THRESHOLD:
        raise ValidationError(
            f"threshold must be between 1 and {MAX_THRESHOLD}", field="threshold"
        )
    available = MASTER_WEIGHT + COSIGNER_WEIGHT * cosigner_count
    if threshold > available:
        raise ValidationError(
            "threshold exceeds available signer weight",
            field="threshold",
            details={"threshold": threshold, "available_weight": available},
        )
    return threshold
