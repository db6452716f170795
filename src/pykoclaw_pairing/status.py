"""Caller-facing pairing status."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from .orchestrator import PairingStatus

if TYPE_CHECKING:
    from .credentials import CredentialStore
    from .orchestrator import PairingOrchestrator

DEFAULT_ERROR_MESSAGE = "Pairing failed. Start pairing again to retry."


class StatusView(BaseModel):
    status: PairingStatus
    code: str | None = None
    phone: str | None = None
    error: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, str]:
        return self.model_dump(mode="json", exclude_none=True)


class StatusReporter:
    """Translate orchestrator state into what a polling caller sees.

    The credential record wins over in-memory state: once it shows a
    registered account with a phone number the session is reported as
    connected, even before the refresh loop notices.
    """

    def __init__(
        self, orchestrator: PairingOrchestrator, credentials: CredentialStore
    ) -> None:
        self._orchestrator = orchestrator
        self._credentials = credentials

    def get_status(self) -> StatusView:
        registration = self._credentials.read_registration()
        if registration.registered and registration.phone:
            return StatusView(status=PairingStatus.CONNECTED, phone=registration.phone)

        snapshot = self._orchestrator.snapshot()
        if snapshot.status is PairingStatus.CONNECTED:
            return StatusView(status=PairingStatus.CONNECTED)
        if snapshot.status is PairingStatus.IDLE:
            return StatusView(status=PairingStatus.IDLE)
        if snapshot.code:
            return StatusView(
                status=PairingStatus.WAITING,
                code=snapshot.code,
                error=snapshot.last_error,
            )
        if snapshot.status is PairingStatus.ERROR or snapshot.last_error:
            return StatusView(
                status=PairingStatus.ERROR,
                message=snapshot.last_error or DEFAULT_ERROR_MESSAGE,
            )
        return StatusView(status=PairingStatus.WAITING)
