"""Process configuration, read once from the environment at import time."""

from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


DATABASE_URL = os.getenv("DATABASE_URL", "").strip()

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALG = "HS256"
SESSION_TTL_SECONDS = 24 * 60 * 60

VERIFICATION_TTL_SECONDS = 24 * 60 * 60
RESET_TTL_SECONDS = 60 * 60
MIN_PASSWORD_LENGTH = 6
BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

TASK_CACHE_TTL_SECONDS = _env_float("TASK_CACHE_TTL_SECONDS", 30.0)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
EMAIL_PORT = _env_int("EMAIL_PORT", 587)
EMAIL_USER = os.getenv("EMAIL_USER", "")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DEFAULT_AVATAR_COLOR = "#667eea"
AVATAR_COLORS = (
    "#667eea", "#764ba2", "#f093fb", "#4facfe",
    "#43e97b", "#fa709a", "#feca57", "#ee5a6f",
)
