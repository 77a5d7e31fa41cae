"""
farmescrow/cli/__init__.py

FarmEscrow CLI: root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    farmescrow = "farmescrow.cli:cli"

Configuration comes from STELLAR_* environment variables, optionally
overlaid by --config FILE (YAML) and --network.

Every command prints JSON on stdout. Typed failures print a JSON error
object on stderr.

Exit codes:
    0  success
    1  operation failed (validation, not found, conflict, ledger error)
    2  usage error
"""

import logging
from pathlib import Path
from typing import Optional

import click

from farmescrow.cli.commands import (
    CliContext,
    account_command,
    escrow_group,
    fee_command,
    health_command,
    multisig_command,
    tx_command,
)


@click.group()
@click.version_option(package_name="farmescrow")
@click.option(
    "--config", "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with LedgerConfig fields.",
)
@click.option(
    "--network",
    type=str,
    default=None,
    help="Network preset (testnet, public). Overrides STELLAR_NETWORK.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Optional[Path],
    network: Optional[str],
    log_level: str,
) -> None:
    """
    FarmEscrow: two-party escrow settlement on the Stellar ledger.

    \b
    Quick start:
      farmescrow health
      farmescrow fee --operations 2
      farmescrow escrow create --farmer G... --buyer G... --amount 10 \\
          --deadline 1767225600 --order-id ORD-1
      farmescrow escrow release <balance-id> --farmer G...
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = ctx.ensure_object(CliContext)
    settings.config_file = config_file
    settings.network = network


cli.add_command(health_command)
cli.add_command(account_command)
cli.add_command(fee_command)
cli.add_command(escrow_group)
cli.add_command(tx_command)
cli.add_command(multisig_command)
