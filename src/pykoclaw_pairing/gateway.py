"""Client for the OpenClaw gateway CLI.

Each request runs ``openclaw gateway call <method> --json`` as a subprocess
and parses the JSON it prints. Every failure mode (spawn error, non-zero
exit, timeout, unparsable or incomplete output) surfaces as a
:class:`GatewayError` so callers only ever handle one exception family.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import subprocess
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from .config import PairingSettings, get_config

log = logging.getLogger(__name__)

NO_DATA = "no data returned"


class GatewayError(Exception):
    """A gateway request failed."""


class GatewayUnreachable(GatewayError):
    """The gateway could not be reached or started."""


class GatewayTimeout(GatewayError):
    """A gateway request exceeded its time bound."""


class MalformedResponse(GatewayError):
    """The gateway answered, but not with the expected data."""


class LoginStartResult(BaseModel):
    code: str | None = Field(
        default=None, validation_alias=AliasChoices("qrDataUrl", "code")
    )
    message: str | None = None


class LoginWaitResult(BaseModel):
    connected: bool | None = None
    message: str | None = None


class GatewayClient:
    """Issues pairing requests to the gateway through its CLI."""

    def __init__(self, config: PairingSettings | None = None) -> None:
        self._config = config or get_config()

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["HOME"] = str(self._config.openclaw_home)
        if self._config.extra_path:
            env["PATH"] = os.pathsep.join(
                [self._config.extra_path, env.get("PATH", "")]
            )
        return env

    def _command(
        self, method: str, params: dict[str, Any] | None, timeout: float
    ) -> list[str]:
        args = [str(self._config.openclaw_bin), "gateway", "call", method]
        if params is not None:
            args += ["--params", json.dumps(params)]
        args += ["--timeout", str(int(timeout * 1000)), "--json"]
        return args

    async def _call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float,
        grace: float | None = None,
    ) -> dict[str, Any]:
        args = self._command(method, params, timeout)
        log.debug("Gateway call: %s", method)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env(),
            )
        except OSError as err:
            raise GatewayUnreachable(f"Cannot run {args[0]}: {err}") from err

        if grace is None:
            grace = self._config.process_grace_seconds
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout + grace
            )
        except asyncio.TimeoutError as err:
            _kill(proc)
            await proc.wait()
            raise GatewayTimeout(f"{method} timed out after {timeout:g}s") from err
        except asyncio.CancelledError:
            _kill(proc)
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(proc.wait())
            raise

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise GatewayError(
                f"{method} failed: {detail or f'exit code {proc.returncode}'}"
            )

        try:
            data = json.loads(stdout)
        except ValueError as err:
            raise MalformedResponse(f"{method} returned invalid JSON") from err
        if not isinstance(data, dict):
            raise MalformedResponse(f"{method} returned {type(data).__name__}")
        return data

    async def check_status(self) -> None:
        """Check gateway liveness; raise :class:`GatewayUnreachable` if down."""
        try:
            await self._call(
                "status", timeout=self._config.status_timeout_seconds, grace=0
            )
        except GatewayUnreachable:
            raise
        except GatewayError as err:
            raise GatewayUnreachable(str(err)) from err

    async def start_login(
        self, *, force: bool = True, timeout_ms: int | None = None
    ) -> str:
        """Request a new QR code and return its payload (a data URL)."""
        data = await self._call(
            "web.login.start",
            {
                "force": force,
                "timeoutMs": timeout_ms or self._config.login_timeout_ms,
            },
            timeout=self._config.start_login_timeout_seconds,
        )
        try:
            result = LoginStartResult.model_validate(data)
        except ValidationError as err:
            raise MalformedResponse(f"web.login.start: {err}") from err
        if not result.code:
            log.debug("No QR code in response: %s", data)
            raise GatewayError(result.message or NO_DATA)
        return result.code

    async def wait_for_login(
        self, *, timeout_ms: int | None = None
    ) -> LoginWaitResult:
        """Block until the gateway reports the scan or its own timeout."""
        data = await self._call(
            "web.login.wait",
            {"timeoutMs": timeout_ms or self._config.wait_timeout_ms},
            timeout=self._config.wait_timeout_seconds,
        )
        try:
            result = LoginWaitResult.model_validate(data)
        except ValidationError as err:
            raise MalformedResponse(f"web.login.wait: {err}") from err
        if result.connected is None and result.message is None:
            raise MalformedResponse(NO_DATA)
        return result

    def launch(self) -> None:
        """Start the gateway detached from this process."""
        args = [str(self._config.openclaw_bin), "gateway"]
        log.info("Launching gateway: %s", " ".join(args))
        try:
            subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=self._env(),
                start_new_session=True,
            )
        except OSError as err:
            raise GatewayUnreachable(f"Cannot launch gateway: {err}") from err


def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
