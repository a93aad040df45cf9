import logging
import threading
import time
from typing import Callable, TypedDict

from database.db import AttendanceRecord, StudentRow
from database.realtime import Change, ChangeFeed
from idscan.config import STATION_TTL_SECONDS
from idscan.core.gate import ScanDeduplicationGate
from idscan.core.keyed_index import KeyedIndex
from idscan.core.ordered_queue import OrderedQueue
from idscan.core.resolver import (
    SCAN_ACTIONS,
    STORE_FAILURES,
    AttendanceStateResolver,
    resolve_time_period,
)
from idscan.errors import (
    AttendanceError,
    DecisionCode,
    MissingEventSelectionError,
    StorageError,
    UnknownStudentError,
)
from idscan.roles import ScanSessionContext

logger = logging.getLogger(__name__)


class ScanOutcome(TypedDict):
    ticket: int
    code: str
    accepted: bool
    logged: bool
    decision_code: DecisionCode
    message: str
    action: str
    time_period: str | None
    event_id: int | None
    student: StudentRow | None
    record: AttendanceRecord | None
    retry_after_seconds: float | None
    error: AttendanceError | None


class _PendingScan(TypedDict):
    ticket: int
    code: str
    action: str
    time_period: str | None
    event_id: int | None


class ScanStation:
    """
    One scanning session: a roster index, a dedup gate and a FIFO inbox.

    Decoded codes are accepted through the gate, queued, and drained one at a
    time so two rapid scans are resolved in arrival order. A failed scan is
    captured on its outcome and never stops the station.
    """

    def __init__(
        self,
        station_id: str,
        context: ScanSessionContext,
        resolver: AttendanceStateResolver,
        *,
        roster_loader: Callable[[], list[StudentRow]],
        student_lookup: Callable[[str], StudentRow | None],
        gate: ScanDeduplicationGate | None = None,
    ):
        self.station_id = station_id
        self.context = context
        self.resolver = resolver
        self._roster_loader = roster_loader
        self._student_lookup = student_lookup
        self.gate = gate or ScanDeduplicationGate()
        self.index_by_qr: KeyedIndex[str, StudentRow] = KeyedIndex()
        self.index_by_id: KeyedIndex[int, StudentRow] = KeyedIndex()
        self.inbox: OrderedQueue[_PendingScan] = OrderedQueue()
        self._lock = threading.RLock()
        self._next_ticket = 0
        self._roster_stale = True
        self.last_seen = time.monotonic()

    # -----------------------------
    # Roster index
    # -----------------------------
    def mark_roster_stale(self) -> None:
        self._roster_stale = True

    def rebuild_index(self, students: list[StudentRow] | None = None) -> int:
        """Rebuild both indexes from scratch; returns the roster size."""
        if students is None:
            try:
                students = self._roster_loader()
            except STORE_FAILURES as exc:
                raise StorageError(str(exc)) from exc

        by_qr: KeyedIndex[str, StudentRow] = KeyedIndex()
        by_id: KeyedIndex[int, StudentRow] = KeyedIndex()
        for student in students:
            by_qr.set(student["qr_code"], student)
            by_id.set(student["id"], student)

        with self._lock:
            self.index_by_qr = by_qr
            self.index_by_id = by_id
            self._roster_stale = False
        logger.debug("Station %s indexed %d students", self.station_id, len(students))
        return len(students)

    def lookup_student(self, code: str) -> StudentRow:
        if self._roster_stale:
            self.rebuild_index()

        student = self.index_by_qr.get(code)
        if student is not None:
            return student

        # index may lag behind a registration; ask the store before giving up
        try:
            student = self._student_lookup(code)
        except STORE_FAILURES as exc:
            raise StorageError(str(exc)) from exc
        if student is None:
            raise UnknownStudentError(code)

        self.index_by_qr.set(student["qr_code"], student)
        self.index_by_id.set(student["id"], student)
        return student

    # -----------------------------
    # Scan pipeline
    # -----------------------------
    def submit(
        self,
        code: str,
        action: str,
        *,
        time_period: str | None = None,
        event_id: int | None = None,
    ) -> int | None:
        """Queue a decoded code. Returns its ticket, or None when the gate drops it."""
        if action not in SCAN_ACTIONS:
            raise ValueError(f"Invalid action: {action!r}")
        if time_period:
            time_period = resolve_time_period(time_period, self.resolver.clock())

        clean_code = (code or "").strip()
        with self._lock:
            if not clean_code or not self.gate.accept(clean_code):
                return None
            self._next_ticket += 1
            ticket = self._next_ticket
            self.inbox.enqueue(
                {
                    "ticket": ticket,
                    "code": clean_code,
                    "action": action,
                    "time_period": time_period,
                    "event_id": event_id,
                }
            )
            return ticket

    def drain(self) -> list[ScanOutcome]:
        outcomes: list[ScanOutcome] = []
        with self._lock:
            while not self.inbox.is_empty():
                outcomes.append(self._process(self.inbox.dequeue()))
        return outcomes

    def handle(
        self,
        code: str,
        action: str,
        *,
        time_period: str | None = None,
        event_id: int | None = None,
    ) -> ScanOutcome:
        with self._lock:
            ticket = self.submit(code, action, time_period=time_period, event_id=event_id)
            if ticket is None:
                return self._ignored(code, action, time_period, event_id)

            mine: ScanOutcome | None = None
            for outcome in self.drain():
                if outcome["ticket"] == ticket:
                    mine = outcome
            if mine is None:
                raise RuntimeError(f"Scan ticket {ticket} was not drained on station {self.station_id}")
            return mine

    def _process(self, pending: _PendingScan) -> ScanOutcome:
        event_id = pending["event_id"] if pending["event_id"] is not None else self.context.event_id
        outcome: ScanOutcome = {
            "ticket": pending["ticket"],
            "code": pending["code"],
            "accepted": True,
            "logged": False,
            "decision_code": "STORAGE_ERROR",
            "message": "",
            "action": pending["action"],
            "time_period": None,
            "event_id": event_id,
            "student": None,
            "record": None,
            "retry_after_seconds": None,
            "error": None,
        }

        try:
            if event_id is None:
                raise MissingEventSelectionError()
            student = self.lookup_student(pending["code"])
            outcome["student"] = student
            period = resolve_time_period(pending["time_period"], self.resolver.clock())
            outcome["time_period"] = period

            resolution = self.resolver.resolve(
                student_id=student["id"],
                event_id=event_id,
                time_period=period,
                action=pending["action"],
            )
            outcome["logged"] = True
            outcome["decision_code"] = resolution["decision_code"]
            outcome["message"] = f"{student['name']} - {resolution['message']}"
            outcome["record"] = resolution["record"]
        except AttendanceError as exc:
            logger.warning(
                "Scan %s on station %s failed: %s", pending["code"], self.station_id, exc.message
            )
            outcome["decision_code"] = exc.decision_code
            outcome["message"] = exc.message
            outcome["error"] = exc
        return outcome

    def _ignored(
        self,
        code: str,
        action: str,
        time_period: str | None,
        event_id: int | None,
    ) -> ScanOutcome:
        logger.debug("Duplicate scan ignored on station %s: %r", self.station_id, code)
        return {
            "ticket": 0,
            "code": (code or "").strip(),
            "accepted": False,
            "logged": False,
            "decision_code": "DUPLICATE_IGNORED",
            "message": "Duplicate scan ignored.",
            "action": action,
            "time_period": time_period,
            "event_id": event_id if event_id is not None else self.context.event_id,
            "student": None,
            "record": None,
            "retry_after_seconds": self.gate.retry_after_seconds(),
            "error": None,
        }


class StationRegistry:
    """Scan stations keyed by session subject and station id, expired after a TTL."""

    def __init__(
        self,
        station_factory: Callable[[str, ScanSessionContext], ScanStation],
        *,
        ttl_seconds: int = STATION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = station_factory
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._stations: dict[str, ScanStation] = {}

    @staticmethod
    def key_for(context: ScanSessionContext, station_id: str | None) -> str:
        return f"{context.subject}:{(station_id or 'default').strip() or 'default'}"

    def get(self, context: ScanSessionContext, station_id: str | None = None) -> ScanStation:
        key = self.key_for(context, station_id)
        with self._lock:
            self._cleanup(self._clock())
            station = self._stations.get(key)
            if station is None:
                station = self._factory(key, context)
                self._stations[key] = station
            elif station.context != context:
                station.context = context
            station.last_seen = self._clock()
            return station

    def _cleanup(self, now: float) -> None:
        expired = [k for k, s in self._stations.items() if now - s.last_seen > self.ttl_seconds]
        for k in expired:
            self._stations.pop(k, None)

    def mark_all_stale(self, _change: Change | None = None) -> None:
        with self._lock:
            for station in self._stations.values():
                station.mark_roster_stale()

    def attach(self, feed: ChangeFeed) -> Callable[[], None]:
        return feed.subscribe("students", self.mark_all_stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._stations)

    def reset(self) -> None:
        with self._lock:
            self._stations.clear()
