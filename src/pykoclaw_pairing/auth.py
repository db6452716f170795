"""Interactive WhatsApp QR pairing flow."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path

import click

from .config import PairingSettings, get_config
from .credentials import CredentialStore
from .gateway import GatewayClient
from .orchestrator import PairingOrchestrator, PairingStatus
from .status import StatusReporter

log = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0


def decode_data_url(code: str) -> bytes:
    """Decode a ``data:<mime>;base64,<payload>`` URL into raw bytes."""
    header, sep, payload = code.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("QR code is not a base64 data URL")
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as err:
        raise ValueError(f"QR code payload is not valid base64: {err}") from err


def save_qr_image(code: str, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(decode_data_url(code))
    return path


async def run_pairing(
    *,
    qr_file: Path,
    config: PairingSettings | None = None,
    gateway: GatewayClient | None = None,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> str | None:
    """Pair WhatsApp with the gateway, writing each QR code to *qr_file*.

    Returns the linked phone number (if the credentials carry one).  Raises
    :class:`click.ClickException` when pairing fails.
    """
    config = config or get_config()
    credentials = CredentialStore(config.credentials_file)
    orchestrator = PairingOrchestrator(
        gateway=gateway or GatewayClient(config),
        credentials=credentials,
        config=config,
    )
    reporter = StatusReporter(orchestrator, credentials)

    view = reporter.get_status()
    if view.status is PairingStatus.CONNECTED:
        click.echo(f"✓ Already paired with WhatsApp ({view.phone})")
        click.echo(f"  To pair again, remove {credentials.path}")
        return view.phone

    click.echo("Starting WhatsApp pairing...\n")
    ack = orchestrator.start_pairing()
    if not ack.accepted:
        raise click.ClickException(ack.message)

    shown_code: str | None = None
    shown_error: str | None = None
    try:
        while True:
            await asyncio.sleep(poll_interval)
            view = reporter.get_status()

            if view.status is PairingStatus.CONNECTED:
                click.echo("\n✓ Successfully paired with WhatsApp!")
                if view.phone:
                    click.echo(f"  Linked number: {view.phone}")
                return view.phone

            if view.status is PairingStatus.ERROR:
                raise click.ClickException(view.message or "Pairing failed")

            if view.code and view.code != shown_code:
                if shown_code is None:
                    click.echo("Scan the QR code with WhatsApp:")
                    click.echo("  1. Open WhatsApp on your phone")
                    click.echo("  2. Tap Settings → Linked Devices → Link a Device")
                    click.echo("  3. Point your camera at the QR code image\n")
                shown_code = view.code
                try:
                    save_qr_image(view.code, qr_file)
                except ValueError as err:
                    log.warning("Cannot decode QR image: %s", err)
                    click.echo(f"QR code: {view.code}")
                else:
                    click.echo(
                        f"QR code written to {qr_file} (refreshes every "
                        f"{config.refresh_interval_seconds:g}s)"
                    )

            if view.error and view.error != shown_error:
                click.echo(f"  (gateway: {view.error})", err=True)
            shown_error = view.error
    finally:
        orchestrator.shutdown()
