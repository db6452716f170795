"""WhatsApp pairing session orchestrator.

Drives one QR pairing session at a time: make sure the gateway is up, ask it
for a QR code, wait for the scan in the background, regenerate the code
before it expires and give up after an absolute deadline.

All state lives in a single :class:`PairingSession` and is only mutated from
the asyncio event loop, between awaits, so the refresh loop, the scan-wait
task and the deadline timer never interleave inside a transition.  Results
arriving for a session that has since been replaced are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from .config import PairingSettings, get_config
from .gateway import GatewayError

if TYPE_CHECKING:
    from .credentials import CredentialStore
    from .gateway import GatewayClient

log = logging.getLogger(__name__)

SESSION_TIMEOUT_MESSAGE = "Timed out waiting for the QR code to be scanned."


class PairingStatus(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    CONNECTED = "connected"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({PairingStatus.CONNECTED, PairingStatus.ERROR})


@dataclass
class PairingSession:
    """Mutable state of one pairing attempt, owned by the orchestrator."""

    session_id: int
    started_at: datetime
    status: PairingStatus = PairingStatus.WAITING
    current_code: str | None = None
    last_error: str | None = None
    launching: bool = False
    code_requested_at: float | None = None
    refresh_task: asyncio.Task[None] | None = field(default=None, repr=False)
    deadline_timer: asyncio.TimerHandle | None = field(default=None, repr=False)
    bootstrap_task: asyncio.Task[None] | None = field(default=None, repr=False)
    wait_task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def cancel_wait(self) -> None:
        if self.wait_task is not None:
            _cancel_task(self.wait_task)
            self.wait_task = None

    def cancel_activities(self) -> None:
        """Cancel every timer and background task tied to this session."""
        if self.deadline_timer is not None:
            self.deadline_timer.cancel()
            self.deadline_timer = None
        if self.refresh_task is not None:
            _cancel_task(self.refresh_task)
            self.refresh_task = None
        if self.bootstrap_task is not None:
            _cancel_task(self.bootstrap_task)
            self.bootstrap_task = None
        self.cancel_wait()


def _cancel_task(task: asyncio.Task[None]) -> None:
    if task.done():
        return
    # A task tearing down its own session just returns instead.
    if task is not asyncio.current_task():
        task.cancel()


@dataclass(frozen=True)
class SessionSnapshot:
    status: PairingStatus
    code: str | None = None
    last_error: str | None = None
    started_at: datetime | None = None


@dataclass(frozen=True)
class PairingAck:
    accepted: bool
    message: str


class PairingOrchestrator:
    """Runs the QR pairing state machine against the gateway."""

    def __init__(
        self,
        *,
        gateway: GatewayClient,
        credentials: CredentialStore,
        config: PairingSettings | None = None,
    ) -> None:
        self._gateway = gateway
        self._credentials = credentials
        self._config = config or get_config()
        self._session: PairingSession | None = None
        self._next_session_id = 1

    def snapshot(self) -> SessionSnapshot:
        session = self._session
        if session is None:
            return SessionSnapshot(status=PairingStatus.IDLE)
        return SessionSnapshot(
            status=session.status,
            code=session.current_code,
            last_error=session.last_error,
            started_at=session.started_at,
        )

    def start_pairing(self) -> PairingAck:
        """Start a new session and return at once; work continues in the background.

        Must be called from a running event loop.
        """
        previous = self._session
        if previous is not None and previous.launching:
            log.info("Gateway is still starting; pairing request rejected")
            return PairingAck(
                accepted=False, message="Gateway is starting, try again shortly."
            )
        if previous is not None:
            previous.cancel_activities()

        session = PairingSession(
            session_id=self._next_session_id,
            started_at=datetime.now(timezone.utc),
        )
        self._next_session_id += 1
        self._session = session
        log.info("Starting WhatsApp pairing (session=%d)", session.session_id)

        loop = asyncio.get_running_loop()
        session.deadline_timer = loop.call_later(
            self._config.session_timeout_seconds, self._on_deadline, session
        )
        session.bootstrap_task = asyncio.create_task(self._bootstrap(session))
        return PairingAck(accepted=True, message="Generating QR code...")

    def shutdown(self) -> None:
        """Cancel all background activity of the live session."""
        if self._session is not None:
            self._session.cancel_activities()

    def _is_live(self, session: PairingSession) -> bool:
        return session is self._session and not session.is_terminal

    async def _bootstrap(self, session: PairingSession) -> None:
        session.launching = True
        try:
            await self._ensure_gateway()
        except GatewayError as err:
            log.error("Gateway unavailable: %s", err)
            self._fail(session, str(err))
            return
        finally:
            session.launching = False

        if not await self._generate_code(session):
            self._fail(session, session.last_error or "Failed to generate QR code.")
            return

        if self._is_live(session):
            session.refresh_task = asyncio.create_task(self._refresh_loop(session))

    async def _ensure_gateway(self) -> None:
        try:
            await self._gateway.check_status()
            log.info("Gateway running")
            return
        except GatewayError as err:
            log.info("Gateway not reachable (%s), starting it", err)
        self._gateway.launch()
        await asyncio.sleep(self._config.gateway_startup_seconds)

    async def _generate_code(self, session: PairingSession) -> bool:
        log.info("Requesting new QR code (session=%d)", session.session_id)
        requested_at = asyncio.get_running_loop().time()
        try:
            code = await self._gateway.start_login(
                force=True, timeout_ms=self._config.login_timeout_ms
            )
        except GatewayError as err:
            log.warning("QR generation failed: %s", err)
            self._record_error(session, str(err))
            return False

        if not self._is_live(session):
            return False
        session.current_code = code
        session.code_requested_at = requested_at
        session.last_error = None
        log.info("QR code ready (session=%d)", session.session_id)

        session.cancel_wait()
        session.wait_task = asyncio.create_task(self._wait_for_scan(session))
        return True

    async def _wait_for_scan(self, session: PairingSession) -> None:
        try:
            result = await self._gateway.wait_for_login(
                timeout_ms=self._config.wait_timeout_ms
            )
        except GatewayError as err:
            log.warning("Waiting for scan failed: %s", err)
            self._record_error(session, str(err))
            return

        if result.connected:
            log.info("Gateway reported scan complete")
            self._mark_connected(session)
        elif result.message:
            self._record_error(session, result.message)

    async def _refresh_loop(self, session: PairingSession) -> None:
        loop = asyncio.get_running_loop()
        interval = self._config.refresh_interval_seconds
        # Fixed-rate ticks anchored at the first request, so start_login
        # latency never stretches a code's lifetime beyond the interval.
        next_tick = session.code_requested_at or loop.time()
        while self._is_live(session):
            next_tick = max(next_tick + interval, loop.time())
            await asyncio.sleep(next_tick - loop.time())
            if not self._is_live(session):
                return
            if self._credentials.read_registration().registered:
                log.info("Credentials registered, stopping QR refresh")
                self._mark_connected(session)
                return
            await self._generate_code(session)

    def _on_deadline(self, session: PairingSession) -> None:
        session.deadline_timer = None
        if self._is_live(session):
            log.warning(
                "Pairing session %d timed out after %gs",
                session.session_id,
                self._config.session_timeout_seconds,
            )
            self._fail(session, SESSION_TIMEOUT_MESSAGE)

    def _record_error(self, session: PairingSession, message: str) -> None:
        if self._is_live(session):
            session.last_error = message

    def _mark_connected(self, session: PairingSession) -> None:
        if not self._is_live(session):
            return
        session.status = PairingStatus.CONNECTED
        session.current_code = None
        session.last_error = None
        session.cancel_activities()
        log.info("WhatsApp paired (session=%d)", session.session_id)

    def _fail(self, session: PairingSession, message: str) -> None:
        if not self._is_live(session):
            return
        session.status = PairingStatus.ERROR
        session.current_code = None
        session.last_error = message
        session.cancel_activities()
        log.info("Pairing session %d failed: %s", session.session_id, message)
