"""Pairing wizard configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class PairingSettings(BaseSettings):
    """Pairing wizard configuration."""

    openclaw_bin: Path = Field(default=Path("openclaw"))
    openclaw_home: Path = Field(default=Path.home())
    extra_path: str | None = Field(
        default=None,
        description="Directory prepended to PATH when running the gateway CLI.",
    )
    credentials_path: Path | None = Field(
        default=None,
        description="WhatsApp creds.json written by the gateway after a scan.",
    )

    status_timeout_seconds: float = Field(default=5.0, gt=0)
    start_login_timeout_seconds: float = Field(default=30.0, gt=0)
    wait_timeout_seconds: float = Field(default=65.0, gt=0)
    process_grace_seconds: float = Field(default=5.0, ge=0)
    login_timeout_ms: int = Field(default=25000, gt=0)
    wait_timeout_ms: int = Field(default=60000, gt=0)

    gateway_startup_seconds: float = Field(default=10.0, ge=0)
    refresh_interval_seconds: float = Field(default=18.0, gt=0)
    session_timeout_seconds: float = Field(default=180.0, gt=0)

    model_config = {
        "env_prefix": "PYKOCLAW_PAIR_",
        "env_file": (
            str(Path.home() / ".local" / "share" / "pykoclaw" / ".env"),
            ".env",
        ),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def credentials_file(self) -> Path:
        if self.credentials_path is not None:
            return self.credentials_path
        return (
            self.openclaw_home
            / ".openclaw"
            / "credentials"
            / "whatsapp"
            / "default"
            / "creds.json"
        )


_config: PairingSettings | None = None


def get_config() -> PairingSettings:
    """Get pairing wizard configuration."""
    global _config
    if _config is None:
        _config = PairingSettings()
    return _config
