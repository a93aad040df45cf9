import hashlib
import hmac
import logging
import re
import secrets
import sqlite3
from datetime import date as date_cls
from datetime import datetime
from typing import Any, Literal, TypedDict

from idscan.config import ADMIN_PASSWORD, ADMIN_USERNAME, DB_PATH, QR_PAYLOAD_PREFIX
from database.realtime import FEED

logger = logging.getLogger(__name__)

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000
PIN_PATTERN = re.compile(r"^\d{4}$")

EventStatus = Literal["scheduled", "active", "completed"]
TimePeriod = Literal["morning", "afternoon"]
AttendanceStatus = Literal["present", "left"]
OfficerRole = Literal["rotc_officer", "usc_officer"]

EVENT_STATUSES = ("scheduled", "active", "completed")
TIME_PERIODS = ("morning", "afternoon")
OFFICER_ROLES = ("rotc_officer", "usc_officer")


class StudentRow(TypedDict):
    id: int
    student_code: str
    name: str
    department: str
    program: str
    qr_code: str
    created_at: str
    updated_at: str


class EventRow(TypedDict):
    id: int
    name: str
    date: str
    status: EventStatus
    created_at: str
    updated_at: str


class AttendanceRecord(TypedDict):
    id: int
    student_id: int
    event_id: int
    time_period: TimePeriod
    time_in: str
    time_out: str | None
    status: AttendanceStatus
    created_at: str
    updated_at: str


class DailyPinRow(TypedDict):
    id: int
    email: str
    pin: str
    valid_date: str
    role: OfficerRole
    event_id: int | None
    created_at: str


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def qr_payload_for(student_code: str) -> str:
    """Deterministic QR payload for a student; stable for the student's lifetime."""
    return f"{QR_PAYLOAD_PREFIX}{student_code.strip()}"


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False, timeout=5.0)
    # ON DELETE CASCADE relies on this
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _ensure_default_admin(cursor: sqlite3.Cursor) -> None:
    username = (ADMIN_USERNAME or "").strip()
    password = (ADMIN_PASSWORD or "").strip()
    if not username or not password:
        return

    cursor.execute(
        """
        SELECT id
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (username,),
    )
    if cursor.fetchone():
        return

    cursor.execute(
        """
        INSERT INTO admin_users (username, password_hash)
        VALUES (?, ?)
        """,
        (username, _hash_password(password)),
    )


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_code TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        department TEXT NOT NULL DEFAULT '',
        program TEXT NOT NULL DEFAULT '',
        qr_code TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        status TEXT NOT NULL DEFAULT 'scheduled'
            CHECK (status IN ('scheduled', 'active', 'completed')),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        event_id INTEGER NOT NULL,
        time_period TEXT NOT NULL CHECK (time_period IN ('morning', 'afternoon')),
        time_in TEXT NOT NULL,           -- ISO timestamp
        time_out TEXT,
        status TEXT NOT NULL DEFAULT 'present' CHECK (status IN ('present', 'left')),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
        FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE INDEX IF NOT EXISTS idx_attendance_open_lookup
    ON attendance_records (student_id, event_id, time_period, status, time_in)
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS daily_pins (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL,
        pin TEXT NOT NULL,
        valid_date TEXT NOT NULL,        -- YYYY-MM-DD
        role TEXT NOT NULL CHECK (role IN ('rotc_officer', 'usc_officer')),
        event_id INTEGER,
        created_at TEXT NOT NULL,
        FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE SET NULL,
        UNIQUE(email, valid_date, role)
    )
    """)

    cursor.execute(
        """
    CREATE TABLE IF NOT EXISTS admin_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """
    )

    _ensure_default_admin(cursor)

    conn.commit()
    conn.close()


# -----------------------------
# Row mapping
# -----------------------------
STUDENT_COLUMNS = "id, student_code, name, department, program, qr_code, created_at, updated_at"
EVENT_COLUMNS = "id, name, date, status, created_at, updated_at"
ATTENDANCE_COLUMNS = (
    "id, student_id, event_id, time_period, time_in, time_out, status, created_at, updated_at"
)
PIN_COLUMNS = "id, email, pin, valid_date, role, event_id, created_at"


def _student_from_row(row) -> StudentRow:
    return {
        "id": int(row[0]),
        "student_code": str(row[1]),
        "name": str(row[2]),
        "department": str(row[3] or ""),
        "program": str(row[4] or ""),
        "qr_code": str(row[5]),
        "created_at": str(row[6]),
        "updated_at": str(row[7]),
    }


def _event_from_row(row) -> EventRow:
    return {
        "id": int(row[0]),
        "name": str(row[1]),
        "date": str(row[2]),
        "status": row[3],
        "created_at": str(row[4]),
        "updated_at": str(row[5]),
    }


def _attendance_from_row(row) -> AttendanceRecord:
    return {
        "id": int(row[0]),
        "student_id": int(row[1]),
        "event_id": int(row[2]),
        "time_period": row[3],
        "time_in": str(row[4]),
        "time_out": str(row[5]) if row[5] else None,
        "status": row[6],
        "created_at": str(row[7]),
        "updated_at": str(row[8]),
    }


def _pin_from_row(row) -> DailyPinRow:
    return {
        "id": int(row[0]),
        "email": str(row[1]),
        "pin": str(row[2]),
        "valid_date": str(row[3]),
        "role": row[4],
        "event_id": int(row[5]) if row[5] is not None else None,
        "created_at": str(row[6]),
    }


# -----------------------------
# Admin users
# -----------------------------
def create_admin_user(username: str, password: str) -> int:
    clean_username = username.strip()
    clean_password = password.strip()
    if not clean_username or not clean_password:
        raise ValueError("Username and password are required.")

    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO admin_users (username, password_hash)
            VALUES (?, ?)
            """,
            (clean_username, _hash_password(clean_password)),
        )
        admin_id = int(cur.lastrowid)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()
    return admin_id


def verify_admin_credentials(username: str, password: str) -> dict | None:
    clean_username = username.strip()
    clean_password = password.strip()
    if not clean_username or not clean_password:
        return None

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, username, password_hash
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (clean_username,),
    )
    row = cur.fetchone()
    conn.close()

    if not row:
        return None

    admin_id, saved_username, password_hash = row
    if not _verify_password(clean_password, password_hash):
        return None

    return {"id": admin_id, "username": saved_username}


# -----------------------------
# Students
# -----------------------------
def get_all_students() -> list[StudentRow]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {STUDENT_COLUMNS} FROM students ORDER BY id")
    rows = cur.fetchall()
    conn.close()
    return [_student_from_row(r) for r in rows]


def add_student(student_code: str, name: str, department: str, program: str) -> StudentRow:
    now = _now_iso()
    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO students (student_code, name, department, program, qr_code, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (student_code, name, department, program, qr_payload_for(student_code), now, now),
        )
        student_id = int(cur.lastrowid)
        conn.commit()
        cur.execute(f"SELECT {STUDENT_COLUMNS} FROM students WHERE id = ?", (student_id,))
        student = _student_from_row(cur.fetchone())
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish("students", "INSERT", new=student)
    return student


def get_student_by_id(student_id: int) -> StudentRow | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {STUDENT_COLUMNS} FROM students WHERE id = ?", (student_id,))
    row = cur.fetchone()
    conn.close()
    return _student_from_row(row) if row else None


def get_student_by_qr(qr_code: str) -> StudentRow | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {STUDENT_COLUMNS} FROM students WHERE qr_code = ?", (qr_code,))
    row = cur.fetchone()
    conn.close()
    return _student_from_row(row) if row else None


def update_student(
    student_id: int,
    *,
    department: str | None = None,
    program: str | None = None,
) -> StudentRow | None:
    old = get_student_by_id(student_id)
    if old is None:
        return None

    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE students
            SET department = COALESCE(?, department),
                program = COALESCE(?, program),
                updated_at = ?
            WHERE id = ?
            """,
            (department, program, _now_iso(), student_id),
        )
        conn.commit()
        cur.execute(f"SELECT {STUDENT_COLUMNS} FROM students WHERE id = ?", (student_id,))
        student = _student_from_row(cur.fetchone())
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish("students", "UPDATE", new=student, old=old)
    return student


def delete_student(student_id: int) -> bool:
    old = get_student_by_id(student_id)
    if old is None:
        return False

    conn = connect_db()
    try:
        conn.execute("DELETE FROM students WHERE id = ?", (student_id,))
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish("students", "DELETE", old=old)
    return True


# -----------------------------
# Events
# -----------------------------
def get_all_events() -> list[EventRow]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {EVENT_COLUMNS} FROM events ORDER BY id")
    rows = cur.fetchall()
    conn.close()
    return [_event_from_row(r) for r in rows]


def get_active_events() -> list[EventRow]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {EVENT_COLUMNS} FROM events WHERE status = 'active' ORDER BY id")
    rows = cur.fetchall()
    conn.close()
    return [_event_from_row(r) for r in rows]


def get_event_by_id(event_id: int) -> EventRow | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {EVENT_COLUMNS} FROM events WHERE id = ?", (event_id,))
    row = cur.fetchone()
    conn.close()
    return _event_from_row(row) if row else None


def add_event(name: str, date: str, status: EventStatus = "scheduled") -> EventRow:
    now = _now_iso()
    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO events (name, date, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (name, date, status, now, now),
        )
        event_id = int(cur.lastrowid)
        conn.commit()
        cur.execute(f"SELECT {EVENT_COLUMNS} FROM events WHERE id = ?", (event_id,))
        event = _event_from_row(cur.fetchone())
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish("events", "INSERT", new=event)
    return event


def update_event_status(event_id: int, status: EventStatus) -> EventRow | None:
    if status not in EVENT_STATUSES:
        raise ValueError(f"Invalid event status: {status!r}")
    old = get_event_by_id(event_id)
    if old is None:
        return None

    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(
            "UPDATE events SET status = ?, updated_at = ? WHERE id = ?",
            (status, _now_iso(), event_id),
        )
        conn.commit()
        cur.execute(f"SELECT {EVENT_COLUMNS} FROM events WHERE id = ?", (event_id,))
        event = _event_from_row(cur.fetchone())
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish("events", "UPDATE", new=event, old=old)
    return event


def delete_event_cascade(event_id: int) -> bool:
    """
    Delete an event with its attendance rows. PINs bound to it are unbound,
    not deleted.
    """
    old = get_event_by_id(event_id)
    if old is None:
        return False

    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(f"SELECT {ATTENDANCE_COLUMNS} FROM attendance_records WHERE event_id = ?", (event_id,))
        removed = [_attendance_from_row(r) for r in cur.fetchall()]
        cur.execute("DELETE FROM attendance_records WHERE event_id = ?", (event_id,))
        cur.execute("UPDATE daily_pins SET event_id = NULL WHERE event_id = ?", (event_id,))
        cur.execute("DELETE FROM events WHERE id = ?", (event_id,))
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    for record in removed:
        FEED.publish("attendance_records", "DELETE", old=record)
    FEED.publish("events", "DELETE", old=old)
    return True


# -----------------------------
# Attendance records
# -----------------------------
def insert_attendance_record(
    *,
    student_id: int,
    event_id: int,
    time_period: TimePeriod,
    time_in: str,
) -> AttendanceRecord:
    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO attendance_records (
                student_id,
                event_id,
                time_period,
                time_in,
                time_out,
                status,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, NULL, 'present', ?, ?)
            """,
            (student_id, event_id, time_period, time_in, time_in, time_in),
        )
        record_id = int(cur.lastrowid)
        conn.commit()
        cur.execute(f"SELECT {ATTENDANCE_COLUMNS} FROM attendance_records WHERE id = ?", (record_id,))
        record = _attendance_from_row(cur.fetchone())
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish("attendance_records", "INSERT", new=record)
    return record


def find_open_attendance(
    *,
    student_id: int,
    event_id: int,
    time_period: TimePeriod,
) -> AttendanceRecord | None:
    """
    Latest open record for (student, event, period). Identical time_in values
    are broken by the highest id so repeated lookups agree.
    """
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {ATTENDANCE_COLUMNS}
        FROM attendance_records
        WHERE student_id = ?
          AND event_id = ?
          AND time_period = ?
          AND status = 'present'
          AND time_out IS NULL
        ORDER BY time_in DESC, id DESC
        LIMIT 1
        """,
        (student_id, event_id, time_period),
    )
    row = cur.fetchone()
    conn.close()
    return _attendance_from_row(row) if row else None


def close_attendance_record(record_id: int, *, time_out: str) -> AttendanceRecord | None:
    """
    Close a record only if it is still open. Returns None when another
    writer closed it first.
    """
    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(f"SELECT {ATTENDANCE_COLUMNS} FROM attendance_records WHERE id = ?", (record_id,))
        old_row = cur.fetchone()
        cur.execute(
            """
            UPDATE attendance_records
            SET time_out = ?, status = 'left', updated_at = ?
            WHERE id = ?
              AND status = 'present'
              AND time_out IS NULL
            """,
            (time_out, time_out, record_id),
        )
        if cur.rowcount == 0:
            conn.rollback()
            return None
        conn.commit()
        cur.execute(f"SELECT {ATTENDANCE_COLUMNS} FROM attendance_records WHERE id = ?", (record_id,))
        record = _attendance_from_row(cur.fetchone())
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish(
        "attendance_records",
        "UPDATE",
        new=record,
        old=_attendance_from_row(old_row) if old_row else None,
    )
    return record


def get_attendance_by_event(event_id: int) -> list[AttendanceRecord]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {ATTENDANCE_COLUMNS}
        FROM attendance_records
        WHERE event_id = ?
        ORDER BY time_in DESC, id DESC
        """,
        (event_id,),
    )
    rows = cur.fetchall()
    conn.close()
    return [_attendance_from_row(r) for r in rows]


def get_attendance_record(record_id: int) -> AttendanceRecord | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {ATTENDANCE_COLUMNS} FROM attendance_records WHERE id = ?", (record_id,))
    row = cur.fetchone()
    conn.close()
    return _attendance_from_row(row) if row else None


def delete_attendance_record(record_id: int) -> bool:
    old = get_attendance_record(record_id)
    if old is None:
        return False

    conn = connect_db()
    try:
        conn.execute("DELETE FROM attendance_records WHERE id = ?", (record_id,))
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    FEED.publish("attendance_records", "DELETE", old=old)
    return True


# -----------------------------
# Daily PINs
# -----------------------------
def upsert_daily_pin(
    *,
    email: str,
    pin: str,
    valid_date: str,
    role: OfficerRole,
    event_id: int | None = None,
) -> DailyPinRow:
    clean_email = email.strip().lower()
    if not PIN_PATTERN.match(pin or ""):
        raise ValueError("PIN must be exactly 4 digits.")

    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO daily_pins (email, pin, valid_date, role, event_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(email, valid_date, role)
            DO UPDATE SET pin = excluded.pin, event_id = excluded.event_id
            """,
            (clean_email, pin, valid_date, role, event_id, _now_iso()),
        )
        conn.commit()
        cur.execute(
            f"""
            SELECT {PIN_COLUMNS}
            FROM daily_pins
            WHERE email = ? AND valid_date = ? AND role = ?
            """,
            (clean_email, valid_date, role),
        )
        row = cur.fetchone()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()
    return _pin_from_row(row)


def get_daily_pins() -> list[DailyPinRow]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {PIN_COLUMNS} FROM daily_pins ORDER BY valid_date DESC, created_at DESC")
    rows = cur.fetchall()
    conn.close()
    return [_pin_from_row(r) for r in rows]


def delete_daily_pin(pin_id: int) -> bool:
    conn = connect_db()
    try:
        cur = conn.cursor()
        cur.execute("DELETE FROM daily_pins WHERE id = ?", (pin_id,))
        deleted = cur.rowcount > 0
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()
    return deleted


def _today() -> str:
    return date_cls.today().isoformat()


def validate_daily_pin(email: str, pin: str, role: str, *, on_date: str | None = None) -> bool:
    """A PIN is valid only for its email, role and calendar date."""
    if role not in OFFICER_ROLES or not PIN_PATTERN.match(pin or ""):
        return False

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT pin
        FROM daily_pins
        WHERE email = ? AND role = ? AND valid_date = ?
        """,
        (email.strip().lower(), role, on_date or _today()),
    )
    row = cur.fetchone()
    conn.close()
    if not row:
        return False
    return hmac.compare_digest(str(row[0]), pin)


def get_event_from_pin(
    pin: str,
    role: str,
    *,
    email: str | None = None,
    on_date: str | None = None,
) -> int | None:
    """Event bound to a PIN. Pass the email so officers sharing a PIN never swap events."""
    query = """
        SELECT event_id
        FROM daily_pins
        WHERE pin = ? AND role = ? AND valid_date = ? AND event_id IS NOT NULL
    """
    params: list[Any] = [pin, role, on_date or _today()]
    if email is not None:
        query += " AND email = ?"
        params.append(email.strip().lower())
    query += " ORDER BY created_at DESC LIMIT 1"

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(query, params)
    row = cur.fetchone()
    conn.close()
    return int(row[0]) if row else None


def get_officers() -> list[dict[str, Any]]:
    """Distinct officer emails with the roles and latest date they hold PINs for."""
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT email, role, MAX(valid_date), COUNT(1)
        FROM daily_pins
        GROUP BY email, role
        """
    )
    rows = cur.fetchall()
    conn.close()
    return [
        {
            "email": str(r[0]),
            "role": str(r[1]),
            "last_valid_date": str(r[2]),
            "pin_count": int(r[3]),
        }
        for r in rows
    ]
