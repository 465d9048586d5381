from __future__ import annotations

import os


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///forms.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    TEMP_PASSWORD_LENGTH = int(os.getenv("TEMP_PASSWORD_LENGTH", "12"))
    # Notifications and realtime broadcasts run on a worker pool unless inline.
    SIDE_EFFECTS_INLINE = _env_flag("SIDE_EFFECTS_INLINE")
    SIDE_EFFECT_WORKERS = int(os.getenv("SIDE_EFFECT_WORKERS", "2"))

    ROOT_EMAIL = os.getenv("ROOT_EMAIL", "root@example.com")
    ROOT_PASSWORD = os.getenv("ROOT_PASSWORD", "password")
