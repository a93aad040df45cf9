import logging
import threading
from datetime import datetime
from typing import Any, Callable, Literal, TypedDict

logger = logging.getLogger(__name__)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]
WATCHED_TABLES = ("students", "events", "attendance_records")


class Change(TypedDict):
    table: str
    type: ChangeType
    new: dict[str, Any] | None
    old: dict[str, Any] | None
    commit_timestamp: str


ChangeCallback = Callable[[Change], None]


class ChangeFeed:
    """
    In-process row change feed. The store publishes after each committed
    write; subscribers register per table or with "*" for every table.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[ChangeCallback]] = {}

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        if table != "*" and table not in WATCHED_TABLES:
            raise ValueError(f"Unknown table for change feed: {table}")
        with self._lock:
            self._subscribers.setdefault(table, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(table, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(
        self,
        table: str,
        change_type: ChangeType,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
    ) -> Change:
        change: Change = {
            "table": table,
            "type": change_type,
            "new": dict(new) if new is not None else None,
            "old": dict(old) if old is not None else None,
            "commit_timestamp": datetime.now().isoformat(timespec="microseconds"),
        }
        with self._lock:
            callbacks = list(self._subscribers.get(table, [])) + list(self._subscribers.get("*", []))

        for callback in callbacks:
            try:
                callback(change)
            except Exception:
                # one broken subscriber must not starve the others
                logger.exception("Change feed subscriber failed for %s %s", change_type, table)
        return change

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            if table is None:
                return sum(len(v) for v in self._subscribers.values())
            return len(self._subscribers.get(table, []))

    def reset(self) -> None:
        with self._lock:
            self._subscribers.clear()


FEED = ChangeFeed()
