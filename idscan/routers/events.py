from datetime import date as date_cls
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database.db import (
    add_event,
    delete_event_cascade,
    get_active_events,
    get_all_events,
    get_event_by_id,
    update_event_status,
)
from idscan.core.aggregator import fifo_order
from idscan.core.sequencing import compare_by, stable_sort
from idscan.roles import ScanSessionContext
from idscan.security import require_capability
from idscan.services.runtime import BOARD

router = APIRouter()

_newest_first = compare_by("date", reverse=True)


class EventCreate(BaseModel):
    name: str
    date: str
    status: Literal["scheduled", "active", "completed"] = "scheduled"


class EventStatusUpdate(BaseModel):
    status: Literal["scheduled", "active", "completed"]


def _require_event(event_id: int):
    event = get_event_by_id(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found.")
    return event


@router.get("/events")
def events(_context: ScanSessionContext = Depends(require_capability("scan"))):
    return stable_sort(get_all_events(), _newest_first)


@router.get("/events/active")
def active_events(_context: ScanSessionContext = Depends(require_capability("scan"))):
    return stable_sort(get_active_events(), _newest_first)


@router.post("/events")
def create_event(
    payload: EventCreate,
    _context: ScanSessionContext = Depends(require_capability("manage_events")),
):
    name = payload.name.strip()
    event_date = payload.date.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Event name is required.")
    try:
        date_cls.fromisoformat(event_date)
    except ValueError:
        raise HTTPException(status_code=400, detail="Use YYYY-MM-DD format for date.")
    return add_event(name, event_date, payload.status)


@router.patch("/events/{event_id}")
def patch_event_status(
    event_id: int,
    payload: EventStatusUpdate,
    _context: ScanSessionContext = Depends(require_capability("manage_events")),
):
    event = update_event_status(event_id, payload.status)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found.")
    return event


@router.delete("/events/{event_id}")
def remove_event(
    event_id: int,
    _context: ScanSessionContext = Depends(require_capability("manage_events")),
):
    if not delete_event_cascade(event_id):
        raise HTTPException(status_code=404, detail="Event not found.")
    return {"ok": True, "deleted_id": event_id}


@router.get("/events/{event_id}/attendance")
def event_attendance(
    event_id: int,
    _context: ScanSessionContext = Depends(require_capability("view_reports")),
):
    event = _require_event(event_id)
    view = BOARD.view(event_id)
    return {
        "event": event,
        "consolidated": view["consolidated"],
        "records": fifo_order(BOARD.snapshot(event_id)),
    }


@router.get("/events/{event_id}/summary")
def event_summary(
    event_id: int,
    _context: ScanSessionContext = Depends(require_capability("view_reports")),
):
    _require_event(event_id)
    view = BOARD.view(event_id)
    return {
        "event_id": event_id,
        "unique_attendees": view["unique_attendees"],
        "present": view["status_counts"]["present"],
        "left": view["status_counts"]["left"],
        "record_count": view["record_count"],
    }
