from fastapi import APIRouter

from idscan.config import (
    AFTERNOON_START,
    QR_PAYLOAD_PREFIX,
    REJECT_DOUBLE_TIME_IN,
    SCAN_COOLDOWN_SECONDS,
    STATION_TTL_SECONDS,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/config/scanner")
def scanner_config():
    return {
        "scan_cooldown_seconds": SCAN_COOLDOWN_SECONDS,
        "afternoon_start": AFTERNOON_START.strftime("%H:%M:%S"),
        "reject_double_time_in": REJECT_DOUBLE_TIME_IN,
        "station_ttl_seconds": STATION_TTL_SECONDS,
        "qr_payload_prefix": QR_PAYLOAD_PREFIX,
    }
