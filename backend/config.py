import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("QRTRACK_DB_PATH", BASE_DIR / "database" / "qrtrack.db"))
ADMIN_USERNAME = os.getenv("QRTRACK_ADMIN_USERNAME", "admin").strip() or "admin"
ADMIN_PASSWORD = os.getenv("QRTRACK_ADMIN_PASSWORD", "admin123").strip() or "admin123"
SIGNING_KEY = os.getenv("QRTRACK_SIGNING_KEY", "").strip() or secrets.token_urlsafe(32)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("QRTRACK_AUTH_TOKEN_TTL_SECONDS", "86400"))


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_int(value: str | None, fallback: int, *, minimum: int = 0) -> int:
    if not value:
        return fallback
    try:
        return max(minimum, int(value.strip()))
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("QRTRACK_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("QRTRACK_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("QRTRACK_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("QRTRACK_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("QRTRACK_ENABLE_DEBUG_ENDPOINTS"), False)

LOG_LEVEL = os.getenv("QRTRACK_LOG_LEVEL", "INFO").strip().upper() or "INFO"
DB_BUSY_TIMEOUT_SECONDS = _parse_int(os.getenv("QRTRACK_DB_BUSY_TIMEOUT_SECONDS"), 10, minimum=1)

# Attendance policy
GUEST_TOKEN_PREFIX = "guest-"
VIP_MAX_CAPACITY = 31
CERTIFICATE_THRESHOLD = 70.0
RECENT_CHECKINS_DEFAULT = _parse_int(os.getenv("QRTRACK_RECENT_CHECKINS_DEFAULT"), 5, minimum=1)
RECENT_CHECKINS_MAX = 100
