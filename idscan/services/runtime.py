"""Process-wide scanning state shared by the routers."""
import logging
from typing import Callable

from database import db
from database.realtime import FEED, ChangeFeed
from idscan.core.resolver import AttendanceStateResolver
from idscan.roles import ScanSessionContext
from idscan.services.live_board import LiveAttendanceBoard
from idscan.services.scanner import ScanStation, StationRegistry

logger = logging.getLogger(__name__)

RESOLVER = AttendanceStateResolver(db)
BOARD = LiveAttendanceBoard(db.get_attendance_by_event)
RESOLVER.add_invalidation_hook(BOARD.invalidate)


def _new_station(station_id: str, context: ScanSessionContext) -> ScanStation:
    return ScanStation(
        station_id,
        context,
        RESOLVER,
        roster_loader=db.get_all_students,
        student_lookup=db.get_student_by_qr,
    )


STATIONS = StationRegistry(_new_station)

_detachers: list[Callable[[], None]] = []


def attach(feed: ChangeFeed = FEED) -> None:
    if _detachers:
        return
    _detachers.append(BOARD.attach(feed))
    _detachers.append(STATIONS.attach(feed))
    logger.info("Live board and scan stations subscribed to change feed")


def detach() -> None:
    while _detachers:
        _detachers.pop()()


def reset() -> None:
    detach()
    BOARD.clear()
    STATIONS.reset()
