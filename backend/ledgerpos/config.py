# backend/ledgerpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/ledgerpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///ledgerpos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Two amounts (in cents) are equal when they differ by less than this.
    AMOUNT_TOLERANCE_CENTS = int(os.environ.get("AMOUNT_TOLERANCE_CENTS", "1"))

    # Transient DB contention (locks, deadlocks, stale versions)
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF_SECONDS = float(os.environ.get("TX_RETRY_BACKOFF_SECONDS", "0.1"))

    # Best-effort response cache invalidation after commit
    CACHE_INVALIDATION_ENABLED = _env_bool("CACHE_INVALIDATION_ENABLED", True)
    CACHE_INVALIDATION_ASYNC = _env_bool("CACHE_INVALIDATION_ASYNC", True)
    CACHE_KEY_PREFIX = os.environ.get("CACHE_KEY_PREFIX", "api:/api")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR = os.environ.get("LOG_DIR")  # unset: console only
    LOG_JSON = _env_bool("LOG_JSON", False)
