"""
Configuration - Settings loaded from environment variables (+ optional .env)
"""

import os
from datetime import timedelta
from typing import List

from dotenv import load_dotenv

load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    value = os.getenv(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


class Config:
    """
    Application settings.

    Values are read when the class body is evaluated, so tests that need
    different values pass overrides to ``create_app`` instead of patching
    the environment.
    """

    SECRET_KEY = _env("SECRET_KEY", "dev-secret-key")
    JWT_SECRET_KEY = _env("JWT_SECRET_KEY", "dev-jwt-secret")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(seconds=_env_int("JWT_ACCESS_TOKEN_EXPIRES", 3600))
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(seconds=_env_int("JWT_REFRESH_TOKEN_EXPIRES", 7 * 24 * 3600))

    DATABASE_PATH = _env("DATABASE_PATH", "tasks.db")

    GOOGLE_CLIENT_ID = _env("GOOGLE_CLIENT_ID")

    GEMINI_API_KEY = _env("GEMINI_API_KEY")
    GEMINI_MODEL = _env("GEMINI_MODEL", "gemini-1.5-flash")

    MAIL_SERVER = _env("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_USERNAME = _env("MAIL_USERNAME") or None
    MAIL_PASSWORD = _env("MAIL_PASSWORD") or None
    MAIL_DEFAULT_SENDER = _env("MAIL_DEFAULT_SENDER") or MAIL_USERNAME or "noreply@localhost"

    VERIFICATION_CODE_TTL = _env_int("VERIFICATION_CODE_TTL", 300)
    VERIFICATION_MAX_ATTEMPTS = _env_int("VERIFICATION_MAX_ATTEMPTS", 5)

    CORS_ORIGINS = _env_list("CORS_ORIGINS", ["*"])

    LOG_LEVEL = _env("LOG_LEVEL", "INFO")
