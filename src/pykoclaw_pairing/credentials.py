"""Reader for the WhatsApp credential record written by the gateway.

The gateway persists a Baileys-style ``creds.json`` once a device is linked::

    {
        "registered": true,
        "me": {"id": "5511999998888:12@s.whatsapp.net", "name": "..."}
    }

The file is the ground truth for "paired": the gateway's own wait call can
time out while the scan succeeds moments later.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^(\d+):")


@dataclass(frozen=True)
class Registration:
    """What the credential record says about the linked account."""

    registered: bool = False
    phone: str | None = None


NOT_REGISTERED = Registration()


def extract_phone(me_id: Any) -> str | None:
    """Normalize a ``"<digits>:<suffix>"`` account id to ``"+<digits>"``."""
    if not isinstance(me_id, str):
        return None
    match = _PHONE_RE.match(me_id)
    return f"+{match.group(1)}" if match else None


class CredentialStore:
    """Read-only view of the gateway's persisted WhatsApp credentials."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read_registration(self) -> Registration:
        """Return the registration state; unreadable files count as unregistered."""
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return NOT_REGISTERED
        except (OSError, ValueError) as err:
            log.debug("Cannot read credentials %s: %s", self._path, err)
            return NOT_REGISTERED

        if not isinstance(data, dict) or data.get("registered") is not True:
            return NOT_REGISTERED

        me = data.get("me")
        phone = extract_phone(me.get("id")) if isinstance(me, dict) else None
        return Registration(registered=True, phone=phone)
