import logging
import threading
from typing import Callable, TypedDict

from database.db import AttendanceRecord
from database.realtime import Change, ChangeFeed
from idscan.core.aggregator import (
    ConsolidatedAttendance,
    StatusCounts,
    consolidate_by_student,
    count_unique_attendees,
    status_counts,
)

logger = logging.getLogger(__name__)


class EventView(TypedDict):
    event_id: int
    consolidated: list[ConsolidatedAttendance]
    unique_attendees: int
    status_counts: StatusCounts
    record_count: int


class LiveAttendanceBoard:
    """
    Per-event snapshot of attendance rows kept fresh by the change feed.

    Every delta or invalidation bumps the event's version, loaded or not.
    A load or view computed against an older version is thrown away and
    redone, so a change that lands mid-load is never lost.
    """

    def __init__(self, loader: Callable[[int], list[AttendanceRecord]]):
        self._loader = loader
        self._lock = threading.Lock()
        self._snapshots: dict[int, dict[int, AttendanceRecord]] = {}
        self._views: dict[int, EventView] = {}
        self._versions: dict[int, int] = {}
        self._generation = 0

    def attach(self, feed: ChangeFeed) -> Callable[[], None]:
        unsubscribers = [
            feed.subscribe("attendance_records", self.apply),
            feed.subscribe("events", self._on_event_change),
        ]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach

    def _version(self, event_id: int) -> tuple[int, int]:
        return self._generation, self._versions.get(event_id, 0)

    def _bump(self, event_id: int) -> None:
        self._versions[event_id] = self._versions.get(event_id, 0) + 1
        self._views.pop(event_id, None)

    def apply(self, change: Change) -> None:
        row = change["new"] or change["old"]
        if not row:
            return
        event_id = int(row["event_id"])

        with self._lock:
            self._bump(event_id)
            snapshot = self._snapshots.get(event_id)
            if snapshot is None:
                # not loaded; a load in flight sees the bump and retries
                return
            if change["type"] == "DELETE":
                snapshot.pop(int(row["id"]), None)
            else:
                snapshot[int(row["id"])] = change["new"]  # type: ignore[assignment]

    def _on_event_change(self, change: Change) -> None:
        if change["type"] == "DELETE" and change["old"]:
            self.invalidate(int(change["old"]["id"]))

    def invalidate(self, event_id: int) -> None:
        with self._lock:
            self._snapshots.pop(event_id, None)
            self._bump(event_id)
        logger.debug("Live board invalidated for event %s", event_id)

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()
            self._views.clear()
            self._generation += 1

    def is_loaded(self, event_id: int) -> bool:
        with self._lock:
            return event_id in self._snapshots

    def snapshot(self, event_id: int) -> list[AttendanceRecord]:
        while True:
            with self._lock:
                loaded = self._snapshots.get(event_id)
                if loaded is not None:
                    return list(loaded.values())
                version = self._version(event_id)

            rows = self._loader(event_id)
            with self._lock:
                if self._version(event_id) == version:
                    self._snapshots[event_id] = {row["id"]: row for row in rows}
                    return list(rows)
            logger.debug("Event %s changed during load; reloading", event_id)

    def view(self, event_id: int) -> EventView:
        while True:
            with self._lock:
                cached = self._views.get(event_id)
                if cached is not None:
                    return cached
                version = self._version(event_id)

            rows = self.snapshot(event_id)
            computed: EventView = {
                "event_id": event_id,
                "consolidated": consolidate_by_student(rows),
                "unique_attendees": count_unique_attendees(rows),
                "status_counts": status_counts(rows),
                "record_count": len(rows),
            }
            with self._lock:
                if self._version(event_id) == version and event_id in self._snapshots:
                    self._views[event_id] = computed
                    return computed
