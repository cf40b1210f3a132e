# Overview: Terminal configuration read from the environment.

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class TerminalConfig:
    """Settings for one POS terminal. Every value has an environment override."""
    server_url: str = os.environ.get("STOCKLEDGER_SERVER_URL", "http://127.0.0.1:5000")
    local_db_path: str = os.environ.get("STOCKLEDGER_TERMINAL_DB", "terminal.sqlite3")
    # Bounded so checkout falls back to the offline queue quickly
    request_timeout: float = float(os.environ.get("STOCKLEDGER_REQUEST_TIMEOUT", "5"))
    sync_interval: float = float(os.environ.get("STOCKLEDGER_SYNC_INTERVAL", "30"))
