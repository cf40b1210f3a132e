# Overview: Identifier generation for ledger rows and terminal-side offline sales.

from __future__ import annotations

import secrets
import string
import time
import uuid

_BASE36 = string.digits + string.ascii_lowercase


def new_id() -> str:
    """Primary keys are UUID strings so rows from any store can be upserted into a mirror."""
    return str(uuid.uuid4())


def new_offline_id(now_ms: int | None = None) -> str:
    """
    Idempotency key for a sale captured on a terminal: offline_<epoch ms>_<9 base36 chars>.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"offline_{now_ms}_{suffix}"
