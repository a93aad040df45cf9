import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Literal, Protocol, TypedDict

from database.db import AttendanceRecord, TimePeriod, TIME_PERIODS
from idscan.config import AFTERNOON_START, REJECT_DOUBLE_TIME_IN
from idscan.errors import (
    AttendanceError,
    DecisionCode,
    MissingEventSelectionError,
    NoOpenSessionError,
    SessionAlreadyOpenError,
    StorageError,
    period_label,
)

logger = logging.getLogger(__name__)

ScanAction = Literal["time_in", "time_out"]
SCAN_ACTIONS = ("time_in", "time_out")

STORE_FAILURES = (sqlite3.Error, OSError, ConnectionError, TimeoutError)


class AttendanceStore(Protocol):
    """The slice of the attendance store the resolver writes through."""

    def insert_attendance_record(
        self, *, student_id: int, event_id: int, time_period: TimePeriod, time_in: str
    ) -> AttendanceRecord: ...

    def find_open_attendance(
        self, *, student_id: int, event_id: int, time_period: TimePeriod
    ) -> AttendanceRecord | None: ...

    def close_attendance_record(self, record_id: int, *, time_out: str) -> AttendanceRecord | None: ...


class Resolution(TypedDict):
    action: ScanAction
    decision_code: DecisionCode
    message: str
    record: AttendanceRecord


def resolve_time_period(explicit: str | None, now: datetime) -> TimePeriod:
    """Explicit operator choice wins; otherwise split the day at AFTERNOON_START."""
    if explicit:
        normalized = explicit.strip().lower()
        aliases = {"am": "morning", "pm": "afternoon"}
        normalized = aliases.get(normalized, normalized)
        if normalized not in TIME_PERIODS:
            raise ValueError(f"Invalid time period: {explicit!r}")
        return normalized  # type: ignore[return-value]
    return "morning" if now.time() < AFTERNOON_START else "afternoon"


class AttendanceStateResolver:
    """
    Per (student, event, period) state machine:

        NoSession --time_in--> Open --time_out--> Closed --time_in--> Open

    time_in always inserts (re-entry is allowed). time_out closes the most
    recent open row, ordered by time_in then id, both descending.
    """

    def __init__(
        self,
        store: AttendanceStore,
        *,
        clock: Callable[[], datetime] = datetime.now,
        reject_double_time_in: bool = REJECT_DOUBLE_TIME_IN,
    ):
        self.store = store
        self.clock = clock
        self.reject_double_time_in = reject_double_time_in
        self._invalidation_hooks: list[Callable[[int], None]] = []

    def add_invalidation_hook(self, hook: Callable[[int], None]) -> None:
        self._invalidation_hooks.append(hook)

    def resolve(
        self,
        *,
        student_id: int,
        event_id: int | None,
        time_period: str,
        action: str,
    ) -> Resolution:
        if event_id is None:
            raise MissingEventSelectionError()
        if time_period not in TIME_PERIODS:
            raise ValueError(f"Invalid time period: {time_period!r}")
        if action not in SCAN_ACTIONS:
            raise ValueError(f"Invalid action: {action!r}")

        if action == "time_in":
            result = self.time_in(student_id, event_id, time_period)  # type: ignore[arg-type]
        else:
            result = self.time_out(student_id, event_id, time_period)  # type: ignore[arg-type]

        self._invalidate(event_id)
        return result

    def time_in(self, student_id: int, event_id: int, time_period: TimePeriod) -> Resolution:
        if self.reject_double_time_in:
            existing = self.latest_open_record(student_id, event_id, time_period)
            if existing is not None:
                raise SessionAlreadyOpenError(time_period, existing["id"])

        stamp = self._stamp()
        record = self._call_store(
            self.store.insert_attendance_record,
            student_id=student_id,
            event_id=event_id,
            time_period=time_period,
            time_in=stamp,
        )
        label = period_label(time_period)
        logger.info(
            "Time-in %s: student=%s event=%s record=%s", label, student_id, event_id, record["id"]
        )
        return {
            "action": "time_in",
            "decision_code": "TIME_IN_SET",
            "message": f"{label} time-in recorded.",
            "record": record,
        }

    def time_out(self, student_id: int, event_id: int, time_period: TimePeriod) -> Resolution:
        open_record = self.latest_open_record(student_id, event_id, time_period)
        if open_record is None:
            raise NoOpenSessionError(time_period)

        closed = self._call_store(
            self.store.close_attendance_record,
            open_record["id"],
            time_out=self._stamp(),
        )
        if closed is None:
            # closed by a concurrent writer between the read and the update
            logger.warning("Record %s was closed concurrently", open_record["id"])
            raise NoOpenSessionError(time_period)

        label = period_label(time_period)
        logger.info(
            "Time-out %s: student=%s event=%s record=%s", label, student_id, event_id, closed["id"]
        )
        return {
            "action": "time_out",
            "decision_code": "TIME_OUT_SET",
            "message": f"{label} time-out recorded.",
            "record": closed,
        }

    def latest_open_record(
        self,
        student_id: int,
        event_id: int,
        time_period: TimePeriod,
    ) -> AttendanceRecord | None:
        return self._call_store(
            self.store.find_open_attendance,
            student_id=student_id,
            event_id=event_id,
            time_period=time_period,
        )

    def _stamp(self) -> str:
        return self.clock().isoformat(timespec="microseconds")

    def _call_store(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except AttendanceError:
            raise
        except STORE_FAILURES as exc:
            logger.warning("Attendance store call %s failed: %s", getattr(fn, "__name__", fn), exc)
            raise StorageError(str(exc)) from exc

    def _invalidate(self, event_id: int) -> None:
        for hook in self._invalidation_hooks:
            try:
                hook(event_id)
            except Exception:
                logger.exception("View invalidation failed for event %s", event_id)
