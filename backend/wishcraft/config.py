# backend/wishcraft/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/wishcraft.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///wishcraft.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared secret for X-Shopify-Hmac-Sha256 verification (webhooks rejected when unset)
    SHOPIFY_WEBHOOK_SECRET = os.environ.get("SHOPIFY_WEBHOOK_SECRET")

    # Reconcile purchases for items deactivated after the order was placed
    ALLOW_INACTIVE_ITEM_PURCHASES = _env_bool("ALLOW_INACTIVE_ITEM_PURCHASES", True)

    # None = overfunding allowed without limit
    GROUP_GIFT_OVERAGE_TOLERANCE_CENTS = _env_optional_int("GROUP_GIFT_OVERAGE_TOLERANCE_CENTS")

    GIFT_MESSAGE_MAX_LENGTH = int(os.environ.get("GIFT_MESSAGE_MAX_LENGTH", "500"))

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF_SECONDS = float(os.environ.get("DB_RETRY_BACKOFF_SECONDS", "0.1"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
