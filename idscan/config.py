import os
import secrets
from datetime import time
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("IDSCAN_DB_PATH", BASE_DIR / "database" / "idscan.db"))
ADMIN_USERNAME = os.getenv("IDSCAN_ADMIN_USERNAME", "admin").strip() or "admin"
ADMIN_PASSWORD = os.getenv("IDSCAN_ADMIN_PASSWORD", "admin123").strip() or "admin123"
SIGNING_KEY = os.getenv("IDSCAN_SIGNING_KEY", "").strip() or secrets.token_urlsafe(32)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("IDSCAN_AUTH_TOKEN_TTL_SECONDS", "43200"))
LOG_LEVEL = os.getenv("IDSCAN_LOG_LEVEL", "INFO").strip().upper() or "INFO"


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


def _parse_time(value: str | None, fallback: time) -> time:
    if not value:
        return fallback
    parts = value.split(":")
    try:
        hh = int(parts[0])
        mm = int(parts[1]) if len(parts) > 1 else 0
        ss = int(parts[2]) if len(parts) > 2 else 0
        return time(hh, mm, ss)
    except (ValueError, IndexError):
        return fallback


def _parse_float(value: str | None, fallback: float) -> float:
    if not value:
        return fallback
    try:
        return float(value)
    except ValueError:
        return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("IDSCAN_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("IDSCAN_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("IDSCAN_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept", "X-Station-Id"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("IDSCAN_CORS_ALLOW_CREDENTIALS"), True)

# Scanning
SCAN_COOLDOWN_SECONDS = max(0.0, _parse_float(os.getenv("IDSCAN_SCAN_COOLDOWN_SECONDS"), 2.0))
AFTERNOON_START = _parse_time(os.getenv("IDSCAN_AFTERNOON_START"), time(12, 0))
REJECT_DOUBLE_TIME_IN = _parse_bool(os.getenv("IDSCAN_REJECT_DOUBLE_TIME_IN"), False)
STATION_TTL_SECONDS = int(os.getenv("IDSCAN_STATION_TTL_SECONDS", "3600"))
KEYED_INDEX_CAPACITY = max(1, int(os.getenv("IDSCAN_KEYED_INDEX_CAPACITY", "16")))
QR_PAYLOAD_PREFIX = os.getenv("IDSCAN_QR_PAYLOAD_PREFIX", "QR-")
