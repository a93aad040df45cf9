from fastapi import APIRouter, Depends, HTTPException

from database.db import StudentRow, get_all_students, get_event_by_id
from idscan.core.aggregator import fifo_order
from idscan.core.keyed_index import KeyedIndex
from idscan.core.sequencing import binary_search_contains, compare_by, stable_sort
from idscan.errors import period_label
from idscan.security import require_capability
from idscan.services.runtime import BOARD

router = APIRouter(dependencies=[Depends(require_capability("view_reports"))])


@router.get("/reports/events/{event_id}")
def event_report(event_id: int):
    event = get_event_by_id(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found.")

    roster: KeyedIndex[int, StudentRow] = KeyedIndex()
    for student in get_all_students():
        roster.set(student["id"], student)

    view = BOARD.view(event_id)
    records = BOARD.snapshot(event_id)
    rows = []
    for record in fifo_order(records):
        student = roster.get(record["student_id"])
        rows.append(
            {
                "record_id": record["id"],
                "student_id": record["student_id"],
                "student_code": student["student_code"] if student else None,
                "name": student["name"] if student else None,
                "department": student["department"] if student else None,
                "program": student["program"] if student else None,
                "period": period_label(record["time_period"]),
                "time_in": record["time_in"],
                "time_out": record["time_out"],
                "status": record["status"],
            }
        )

    attended = stable_sort(list({record["student_id"] for record in records}))
    absent = [
        student
        for student in stable_sort(roster.values(), compare_by("name"))
        if not binary_search_contains(attended, student["id"])
    ]

    return {
        "event": event,
        "unique_attendees": view["unique_attendees"],
        "status_counts": view["status_counts"],
        "rows": rows,
        "absent": absent,
    }
