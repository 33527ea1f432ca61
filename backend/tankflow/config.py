# backend/tankflow/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tankflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tankflow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Reservation holds
    RESERVATION_EXPIRY_HOURS = _env_int("RESERVATION_EXPIRY_HOURS", 24)
    RESERVATION_EXPIRING_SOON_HOURS = _env_int("RESERVATION_EXPIRING_SOON_HOURS", 2)
    MAX_RESERVATION_QUANTITY = _env_int("MAX_RESERVATION_QUANTITY", 1000)
    LINE_LOCK_TIMEOUT_SECONDS = _env_int("LINE_LOCK_TIMEOUT_SECONDS", 10)

    # Expiration sweep (off by default; cron can call `flask reservations expire`)
    RESERVATION_SWEEP_ENABLED = _env_bool("RESERVATION_SWEEP_ENABLED", False)
    RESERVATION_SWEEP_INTERVAL_SECONDS = _env_int("RESERVATION_SWEEP_INTERVAL_SECONDS", 300)

    # Workflow visibility
    STUCK_ORDER_THRESHOLD_HOURS = _env_int("STUCK_ORDER_THRESHOLD_HOURS", 24)
    BOTTLENECK_THRESHOLD_HOURS = _env_int("BOTTLENECK_THRESHOLD_HOURS", 3)
