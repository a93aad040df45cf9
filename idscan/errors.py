from typing import Literal

DecisionCode = Literal[
    "TIME_IN_SET",
    "TIME_OUT_SET",
    "DUPLICATE_IGNORED",
    "UNKNOWN_STUDENT",
    "NO_OPEN_SESSION",
    "SESSION_ALREADY_OPEN",
    "MISSING_EVENT",
    "STORAGE_ERROR",
]

PERIOD_LABELS = {"morning": "AM", "afternoon": "PM"}


def period_label(time_period: str) -> str:
    return PERIOD_LABELS.get(time_period, time_period)


class AttendanceError(Exception):
    """Base for failures the scan flow reports back to the operator."""

    decision_code: DecisionCode = "STORAGE_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownStudentError(AttendanceError):
    decision_code = "UNKNOWN_STUDENT"
    status_code = 404

    def __init__(self, qr_code: str):
        super().__init__(f"Invalid QR code. No student registered for {qr_code!r}.")
        self.qr_code = qr_code


class NoOpenSessionError(AttendanceError):
    decision_code = "NO_OPEN_SESSION"
    status_code = 409

    def __init__(self, time_period: str):
        label = period_label(time_period)
        super().__init__(f"No active {label} time-in found. Record a {label} time-in first.")
        self.time_period = time_period


class SessionAlreadyOpenError(AttendanceError):
    decision_code = "SESSION_ALREADY_OPEN"
    status_code = 409

    def __init__(self, time_period: str, record_id: int):
        label = period_label(time_period)
        super().__init__(f"Student already has an open {label} session. Record a {label} time-out first.")
        self.time_period = time_period
        self.record_id = record_id


class MissingEventSelectionError(AttendanceError):
    decision_code = "MISSING_EVENT"
    status_code = 400

    def __init__(self, message: str = "No event selected. Select or activate an event first."):
        super().__init__(message)


class StorageError(AttendanceError):
    decision_code = "STORAGE_ERROR"
    status_code = 503

    def __init__(self, message: str):
        super().__init__(f"Attendance store error: {message}")
        self.underlying = message
