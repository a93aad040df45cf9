import re
from datetime import date as date_cls
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database.db import (
    delete_daily_pin,
    get_daily_pins,
    get_event_by_id,
    get_officers,
    upsert_daily_pin,
)
from idscan.security import require_capability

router = APIRouter(dependencies=[Depends(require_capability("issue_pins"))])

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PinIssue(BaseModel):
    email: str
    pin: str
    role: Literal["rotc_officer", "usc_officer"]
    valid_date: str | None = None
    event_id: int | None = None


@router.get("/pins")
def pins():
    return get_daily_pins()


@router.post("/pins")
def issue_pin(payload: PinIssue):
    email = payload.email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise HTTPException(status_code=400, detail="A valid email is required.")

    valid_date = (payload.valid_date or date_cls.today().isoformat()).strip()
    try:
        date_cls.fromisoformat(valid_date)
    except ValueError:
        raise HTTPException(status_code=400, detail="Use YYYY-MM-DD format for valid_date.")

    if payload.event_id is not None and not get_event_by_id(payload.event_id):
        raise HTTPException(status_code=404, detail="Event not found.")

    try:
        return upsert_daily_pin(
            email=email,
            pin=payload.pin.strip(),
            valid_date=valid_date,
            role=payload.role,
            event_id=payload.event_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/pins/{pin_id}")
def remove_pin(pin_id: int):
    if not delete_daily_pin(pin_id):
        raise HTTPException(status_code=404, detail="PIN not found.")
    return {"ok": True, "deleted_id": pin_id}


@router.get("/officers")
def officers():
    return get_officers()
