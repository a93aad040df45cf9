import asyncio
import logging
from typing import Literal

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from pydantic import BaseModel

from database.db import delete_attendance_record, get_event_by_id
from database.realtime import FEED, Change
from idscan.roles import ScanSessionContext
from idscan.security import decode_session_token, require_capability
from idscan.services.qr import decode_qr_from_image
from idscan.services.runtime import BOARD, STATIONS
from idscan.services.scanner import ScanOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


class ScanRequest(BaseModel):
    qr_code: str
    action: Literal["time_in", "time_out"]
    time_period: Literal["morning", "afternoon"] | None = None
    event_id: int | None = None


def _scan_response(outcome: ScanOutcome) -> dict:
    error = outcome["error"]
    if error is not None:
        raise error
    body = {k: v for k, v in outcome.items() if k != "error"}
    body["verified"] = outcome["logged"]
    return body


def _run_scan(
    context: ScanSessionContext,
    station_id: str | None,
    *,
    qr_code: str,
    action: str,
    time_period: str | None,
    event_id: int | None,
) -> dict:
    if event_id is not None and not get_event_by_id(event_id):
        raise HTTPException(status_code=404, detail="Event not found.")
    station = STATIONS.get(context, station_id)
    outcome = station.handle(qr_code, action, time_period=time_period, event_id=event_id)
    return _scan_response(outcome)


@router.post("/attendance/scan")
def scan(
    payload: ScanRequest,
    context: ScanSessionContext = Depends(require_capability("scan")),
    x_station_id: str | None = Header(default=None),
):
    if not payload.qr_code.strip():
        raise HTTPException(status_code=400, detail="qr_code is required.")
    return _run_scan(
        context,
        x_station_id,
        qr_code=payload.qr_code,
        action=payload.action,
        time_period=payload.time_period,
        event_id=payload.event_id,
    )


@router.post("/attendance/scan/frame")
async def scan_frame(
    context: ScanSessionContext = Depends(require_capability("scan")),
    file: UploadFile = File(...),
    action: Literal["time_in", "time_out"] = Form(...),
    time_period: Literal["morning", "afternoon"] | None = Form(default=None),
    event_id: int | None = Form(default=None),
    x_station_id: str | None = Header(default=None),
):
    if file.content_type not in ("image/jpeg", "image/png"):
        raise HTTPException(status_code=400, detail="Upload JPG/PNG only.")

    data = await file.read()
    try:
        qr_code = decode_qr_from_image(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if not qr_code:
        return {"decoded": False, "verified": False, "message": "No QR code detected."}

    result = _run_scan(
        context,
        x_station_id,
        qr_code=qr_code,
        action=action,
        time_period=time_period,
        event_id=event_id,
    )
    return {"decoded": True, **result}


@router.delete("/attendance/{record_id}")
def remove_attendance(
    record_id: int,
    _context: ScanSessionContext = Depends(require_capability("manage_events")),
):
    if not delete_attendance_record(record_id):
        raise HTTPException(status_code=404, detail="Attendance record not found.")
    return {"ok": True, "deleted_id": record_id}


@router.websocket("/ws/events/{event_id}")
async def event_updates(websocket: WebSocket, event_id: int, token: str | None = None):
    claims = decode_session_token(token or "")
    if not claims or not ScanSessionContext.from_claims(claims).can_view_reports:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Change] = asyncio.Queue()

    def forward(change: Change) -> None:
        row = change["new"] or change["old"] or {}
        if row.get("event_id") == event_id:
            # feed publishes from worker threads
            loop.call_soon_threadsafe(queue.put_nowait, change)

    unsubscribe = FEED.subscribe("attendance_records", forward)
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        # board loads hit sqlite; keep them off the event loop
        snapshot = await asyncio.to_thread(BOARD.view, event_id)
        await websocket.send_json({"type": "snapshot", "view": snapshot})
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)

            if receiver in done:
                getter.cancel()
                if receiver.result()["type"] == "websocket.disconnect":
                    break
                receiver = asyncio.ensure_future(websocket.receive())
                continue

            change = getter.result()
            view = await asyncio.to_thread(BOARD.view, event_id)
            await websocket.send_json(
                {
                    "type": "change",
                    "change": change,
                    "unique_attendees": view["unique_attendees"],
                    "status_counts": view["status_counts"],
                }
            )
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        unsubscribe()
        logger.debug("Live updates closed for event %s", event_id)
