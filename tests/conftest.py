"""Shared fixtures for pairing tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

from pykoclaw_pairing.config import PairingSettings
from pykoclaw_pairing.credentials import CredentialStore
from pykoclaw_pairing.orchestrator import PairingOrchestrator

QR = "data:image/png;base64,iVBORw0KGgo="


async def hang_forever(**_kwargs: object) -> None:
    await asyncio.sleep(3600)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until *predicate* holds (or fail after *timeout*)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def write_creds(path: Path, me_id: str = "5511999998888:1@s.whatsapp.net") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"registered": True, "me": {"id": me_id}}))


@pytest.fixture
def config(tmp_path: Path) -> PairingSettings:
    return PairingSettings(
        openclaw_home=tmp_path,
        gateway_startup_seconds=0.01,
        refresh_interval_seconds=0.05,
        session_timeout_seconds=5.0,
    )


@pytest.fixture
def creds_path(config: PairingSettings) -> Path:
    return config.credentials_file


@pytest.fixture
def credentials(creds_path: Path) -> CredentialStore:
    return CredentialStore(creds_path)


@pytest.fixture
def gateway() -> Mock:
    gateway = Mock()
    gateway.check_status = AsyncMock(return_value=None)
    gateway.start_login = AsyncMock(return_value=QR)
    gateway.wait_for_login = AsyncMock(side_effect=hang_forever)
    gateway.launch = Mock()
    return gateway


@pytest_asyncio.fixture
async def orchestrator(
    gateway: Mock, credentials: CredentialStore, config: PairingSettings
) -> AsyncIterator[PairingOrchestrator]:
    orch = PairingOrchestrator(gateway=gateway, credentials=credentials, config=config)
    yield orch
    orch.shutdown()
    await asyncio.sleep(0)
