# backend/stockzen/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location (postgresql+psycopg://... in production)
        "sqlite:///stockzen.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sync protocol
    SYNC_MAX_BATCH = int(os.environ.get("SYNC_MAX_BATCH", "100"))
    SYNC_RATE_LIMIT = int(os.environ.get("SYNC_RATE_LIMIT", "30"))
    SYNC_RATE_WINDOW_SECONDS = float(os.environ.get("SYNC_RATE_WINDOW_SECONDS", "60"))

    # Oversell policy: when False, exits that would take quantity below zero are rejected
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", True)

    # Critical alert webhook (delivery is skipped when unset)
    CRITICAL_ALERT_WEBHOOK_URL = os.environ.get("CRITICAL_ALERT_WEBHOOK_URL")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000")
    NOTIFICATION_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", "5"))
    NOTIFICATION_MAX_ATTEMPTS = int(os.environ.get("NOTIFICATION_MAX_ATTEMPTS", "2"))
    NOTIFICATIONS_SYNCHRONOUS = _env_bool("NOTIFICATIONS_SYNCHRONOUS", False)

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
