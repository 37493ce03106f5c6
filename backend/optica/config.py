# backend/optica/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/optica.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///optica.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # bcrypt cost factor for password hashing (tests lower this)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Authors may approve/reject their own patient-scoped requests
    DISCOUNT_SELF_SERVICE_ENABLED = _env_flag("DISCOUNT_SELF_SERVICE_ENABLED", True)

    APPROVAL_NOTES_MAX_LENGTH = 500
    DISCOUNT_REASON_MAX_LENGTH = 500

    # Browser origins allowed to call the API (comma-separated)
    CORS_ALLOWED_ORIGINS = {
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if o.strip()
    }
