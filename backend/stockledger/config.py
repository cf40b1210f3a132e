# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Delta sync
    AUTO_SYNC_ENABLED = _env_bool("AUTO_SYNC_ENABLED", False)
    AUTO_SYNC_CONNECTION_ID = os.environ.get("AUTO_SYNC_CONNECTION_ID")
    SYNC_DEBOUNCE_SECONDS = float(os.environ.get("SYNC_DEBOUNCE_SECONDS", "30"))
    SYNC_TIMEOUT_SECONDS = int(os.environ.get("SYNC_TIMEOUT_SECONDS", "60"))
    SYNC_MAX_ATTEMPTS = int(os.environ.get("SYNC_MAX_ATTEMPTS", "5"))
    SYNC_JOB_RETENTION_DAYS = int(os.environ.get("SYNC_JOB_RETENTION_DAYS", "30"))
    # "last_write_wins" or "keep_local"
    SYNC_CONFLICT_POLICY = os.environ.get("SYNC_CONFLICT_POLICY", "last_write_wins")

    # Offline queue: entries past this many attempts are flagged to operators
    OFFLINE_MAX_ATTEMPTS = int(os.environ.get("OFFLINE_MAX_ATTEMPTS", "10"))

    CATALOG_CACHE_TTL_SECONDS = float(os.environ.get("CATALOG_CACHE_TTL_SECONDS", "60"))
    CATALOG_CACHE_MAXSIZE = int(os.environ.get("CATALOG_CACHE_MAXSIZE", "1024"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    AUTO_SYNC_ENABLED = False
    SYNC_DEBOUNCE_SECONDS = 0.05
