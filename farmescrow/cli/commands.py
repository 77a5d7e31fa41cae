"""
farmescrow/cli/commands.py

One command per settlement operation.

Secret keys are read from an option, its environment variable, or a
hidden prompt, in that order. They are never echoed.
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Tuple

import click

from farmescrow.core.config import LedgerConfig
from farmescrow.core.exceptions import EscrowError
from farmescrow.core.models import (
    EscrowRequest,
    MultiSigRequest,
    RefundRequest,
    ReleaseRequest,
    balances_to_dicts,
)
from farmescrow.service import SettlementService

Operation = Callable[[SettlementService], Awaitable[Any]]


@dataclass
class CliContext:
    """
    State shared by the command group and its commands.

    config and service_factory are normally left unset; tests inject them
    through CliRunner.invoke(obj=...).
    """

    config_file: Optional[Path] = None
    network: Optional[str] = None
    config: Optional[LedgerConfig] = None
    service_factory: Callable[[LedgerConfig], SettlementService] = SettlementService.from_config

    def load_config(self) -> LedgerConfig:
        if self.config is None:
            self.config = LedgerConfig.load(config_file=self.config_file, network=self.network)
        return self.config


# ── Runner ────────────────────────────────────────────────────────────────────

def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


def _fail(error: EscrowError) -> None:
    click.echo(json.dumps(error.to_dict(), indent=2, sort_keys=True), err=True)
    raise SystemExit(1)


async def _call(settings: CliContext, config: LedgerConfig, operation: Operation) -> Any:
    async with settings.service_factory(config) as service:
        return await operation(service)


def _run(ctx: click.Context, operation: Operation) -> Any:
    settings = ctx.find_object(CliContext) or CliContext()
    try:
        config = settings.load_config()
        return asyncio.run(_call(settings, config, operation))
    except EscrowError as e:
        _fail(e)


_secret_option = click.option(
    "--secret-key",
    envvar="FARMESCROW_SECRET_KEY",
    prompt=True,
    hide_input=True,
    help="Signing seed (S...). Falls back to FARMESCROW_SECRET_KEY, then a prompt.",
)


# ── Network ───────────────────────────────────────────────────────────────────

@click.command(name="health")
@click.pass_context
def health_command(ctx: click.Context) -> None:
    """Check that the configured Horizon instance answers."""
    settings = ctx.find_object(CliContext) or CliContext()

    async def op(service: SettlementService) -> bool:
        return await service.verify_connection()

    connected = _run(ctx, op)
    config = settings.load_config()
    _emit({
        "connected": connected,
        "network": config.network,
        "horizonUrl": config.horizon_url,
    })
    if not connected:
        raise SystemExit(1)


@click.command(name="fee")
@click.option("--operations", "operation_count", type=int, default=1, show_default=True)
@click.pass_context
def fee_command(ctx: click.Context, operation_count: int) -> None:
    """Estimate the fee for a transaction of N operations."""
    estimate = _run(ctx, lambda s: s.estimate_fee(operation_count))
    _emit(estimate.to_dict())


@click.command(name="tx")
@click.argument("transaction_hash")
@click.pass_context
def tx_command(ctx: click.Context, transaction_hash: str) -> None:
    """Show the outcome of a submitted transaction."""
    outcome = _run(ctx, lambda s: s.get_transaction_status(transaction_hash))
    _emit(outcome.to_dict())


# ── Accounts ──────────────────────────────────────────────────────────────────

@click.command(name="account")
@click.argument("public_key")
@click.pass_context
def account_command(ctx: click.Context, public_key: str) -> None:
    """Show balances, signers and thresholds of an account."""
    snapshot = _run(ctx, lambda s: s.get_account_info(public_key))
    _emit(snapshot.to_dict())


@click.command(name="multisig")
@click.option("--primary", "primary_public_key", required=True)
@click.option("--cosigner", "cosigners", multiple=True, help="Repeat per cosigner.")
@click.option("--threshold", type=int, required=True)
@_secret_option
@click.pass_context
def multisig_command(
    ctx: click.Context,
    primary_public_key: str,
    cosigners: Tuple[str, ...],
    threshold: int,
    secret_key: str,
) -> None:
    """Install cosigners and raise thresholds on an account."""
    request = MultiSigRequest(
        primary_public_key=primary_public_key,
        cosigner_public_keys=tuple(cosigners),
        threshold=threshold,
        source_secret_key=secret_key,
    )
    result = _run(ctx, lambda s: s.setup_multisig_account(request))
    _emit(result.to_dict())


# ── Escrow ────────────────────────────────────────────────────────────────────

@click.group(name="escrow")
def escrow_group() -> None:
    """Create and settle escrows."""


@escrow_group.command(name="create")
@click.option("--farmer", "farmer_public_key", required=True)
@click.option("--buyer", "buyer_public_key", required=True)
@click.option("--amount", required=True, help='Decimal string, e.g. "10.5".')
@click.option("--deadline", type=int, required=True, help="Unix timestamp, seconds.")
@click.option("--order-id", required=True)
@click.option("--asset-code", default=None, help="Omit for the native asset.")
@click.option("--asset-issuer", default=None)
@click.pass_context
def escrow_create(
    ctx: click.Context,
    farmer_public_key: str,
    buyer_public_key: str,
    amount: str,
    deadline: int,
    order_id: str,
    asset_code: Optional[str],
    asset_issuer: Optional[str],
) -> None:
    """Lock funds from the platform account for an order."""
    request = EscrowRequest(
        farmer_public_key=farmer_public_key,
        buyer_public_key=buyer_public_key,
        amount=amount,
        deadline_unix_timestamp=deadline,
        order_id=order_id,
        asset_code=asset_code,
        asset_issuer=asset_issuer,
    )
    receipt = _run(ctx, lambda s: s.create_escrow(request))
    _emit(receipt.to_dict())


@escrow_group.command(name="release")
@click.argument("balance_id")
@click.option("--farmer", "farmer_public_key", required=True)
@_secret_option
@click.pass_context
def escrow_release(
    ctx: click.Context, balance_id: str, farmer_public_key: str, secret_key: str
) -> None:
    """Farmer claims the escrow (at or before the deadline)."""
    request = ReleaseRequest(
        balance_id=balance_id,
        farmer_public_key=farmer_public_key,
        farmer_secret_key=secret_key,
    )
    result = _run(ctx, lambda s: s.release_payment(request))
    _emit(result.to_dict())


@escrow_group.command(name="refund")
@click.argument("balance_id")
@click.option("--buyer", "buyer_public_key", required=True)
@_secret_option
@click.pass_context
def escrow_refund(
    ctx: click.Context, balance_id: str, buyer_public_key: str, secret_key: str
) -> None:
    """Buyer reclaims the escrow (strictly after the deadline)."""
    request = RefundRequest(
        balance_id=balance_id,
        buyer_public_key=buyer_public_key,
        buyer_secret_key=secret_key,
    )
    result = _run(ctx, lambda s: s.refund_escrow(request))
    _emit(result.to_dict())


@escrow_group.command(name="list")
@click.argument("public_key")
@click.pass_context
def escrow_list(ctx: click.Context, public_key: str) -> None:
    """List open balances claimable by an account."""
    balances = _run(ctx, lambda s: s.get_claimable_balances(public_key))
    _emit(balances_to_dicts(balances))
