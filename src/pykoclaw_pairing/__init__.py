"""WhatsApp QR pairing wizard for the OpenClaw gateway."""

from __future__ import annotations

import logging
from pathlib import Path

import click


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """Link a WhatsApp account to the agent gateway."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option(
    "--qr-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("whatsapp-qr.png"),
    show_default=True,
    help="Where to write the QR code image.",
)
def pair(qr_file: Path) -> None:
    """Pair WhatsApp by scanning a QR code."""
    import asyncio

    from .auth import run_pairing

    try:
        asyncio.run(run_pairing(qr_file=qr_file))
    except KeyboardInterrupt:
        click.echo("\n✗ Pairing cancelled.")
        raise SystemExit(1)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the status as JSON.")
def status(as_json: bool) -> None:
    """Check WhatsApp pairing status."""
    import json

    from .config import get_config
    from .credentials import CredentialStore
    from .gateway import GatewayClient
    from .orchestrator import PairingOrchestrator, PairingStatus
    from .status import StatusReporter

    config = get_config()
    credentials = CredentialStore(config.credentials_file)
    orchestrator = PairingOrchestrator(
        gateway=GatewayClient(config), credentials=credentials, config=config
    )
    view = StatusReporter(orchestrator, credentials).get_status()

    if as_json:
        click.echo(json.dumps(view.to_dict()))
    elif view.status is PairingStatus.CONNECTED:
        click.echo(f"WhatsApp paired: {view.phone}")
    else:
        click.echo("WhatsApp not paired")
