"""
Pure derivations over attendance record snapshots. Nothing here touches the
store; callers recompute whenever their snapshot changes.
"""
from typing import Iterable, TypedDict

from database.db import AttendanceRecord
from idscan.core.ordered_queue import OrderedQueue
from idscan.core.sequencing import compare_by, stable_sort

_by_time_in_then_id = compare_by("time_in", "id")


class ConsolidatedAttendance(TypedDict):
    student_id: int
    morning_record: AttendanceRecord | None
    afternoon_record: AttendanceRecord | None


class StatusCounts(TypedDict):
    present: int
    left: int


def _is_newer(candidate: AttendanceRecord, current: AttendanceRecord | None) -> bool:
    if current is None:
        return True
    return _by_time_in_then_id(candidate, current) > 0


def consolidate_by_student(records: Iterable[AttendanceRecord]) -> list[ConsolidatedAttendance]:
    """
    One row per student with the latest morning and afternoon record.
    Ties on time_in go to the highest id. Rows come back ordered by student_id.
    """
    grouped: dict[int, ConsolidatedAttendance] = {}
    for record in records:
        entry = grouped.get(record["student_id"])
        if entry is None:
            entry = {
                "student_id": record["student_id"],
                "morning_record": None,
                "afternoon_record": None,
            }
            grouped[record["student_id"]] = entry

        slot = "morning_record" if record["time_period"] == "morning" else "afternoon_record"
        if _is_newer(record, entry[slot]):
            entry[slot] = record

    return [grouped[sid] for sid in sorted(grouped)]


def count_unique_attendees(records: Iterable[AttendanceRecord]) -> int:
    return len({record["student_id"] for record in records})


def count_unique_attendees_by_event(records: Iterable[AttendanceRecord]) -> dict[int, int]:
    seen: dict[int, set[int]] = {}
    for record in records:
        seen.setdefault(record["event_id"], set()).add(record["student_id"])
    return {event_id: len(students) for event_id, students in seen.items()}


def status_counts(records: Iterable[AttendanceRecord]) -> StatusCounts:
    counts: StatusCounts = {"present": 0, "left": 0}
    for record in records:
        if record["status"] == "present":
            counts["present"] += 1
        elif record["status"] == "left":
            counts["left"] += 1
    return counts


def fifo_order(records: Iterable[AttendanceRecord]) -> list[AttendanceRecord]:
    """Arrival order: oldest time_in first, identical stamps kept in id order."""
    ordered = stable_sort(list(records), _by_time_in_then_id)
    queue = OrderedQueue.from_iterable(ordered)
    out: list[AttendanceRecord] = []
    while not queue.is_empty():
        out.append(queue.dequeue())
    return out
