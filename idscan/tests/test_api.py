import sqlite3
from datetime import date

import pytest

import database.db as db
from idscan.security import issue_session_token
from idscan.services.qr import generate_qr_png


def _station(headers: dict, station_id: str) -> dict:
    return {**headers, "X-Station-Id": station_id}


def _create_student(client, headers, code="2024-0001", name="Ana Reyes"):
    res = client.post(
        "/students",
        json={"student_code": code, "name": name, "department": "CCS", "program": "BSIT"},
        headers=headers,
    )
    assert res.status_code == 200
    return res.json()


def _create_event(client, headers, name="Orientation", event_date="2026-10-17", status="active"):
    res = client.post(
        "/events",
        json={"name": name, "date": event_date, "status": status},
        headers=headers,
    )
    assert res.status_code == 200
    return res.json()


def _officer_headers(event_id=None, role="usc_officer"):
    token, _ = issue_session_token("officer@school.edu", role=role, event_id=event_id)
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_scanner_config(client):
    res = client.get("/config/scanner")
    assert res.status_code == 200
    body = res.json()
    assert body["afternoon_start"] == "12:00:00"
    assert body["qr_payload_prefix"] == "QR-"


def test_login_rejects_invalid_credentials(client):
    res = client.post("/auth/login", json={"username": "admin", "password": "wrong"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid admin credentials."


def test_auth_me(client, auth_headers):
    res = client.get("/auth/me", headers=auth_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["role"] == "super_admin"
    assert "issue_pins" in body["capabilities"]


def test_routes_require_session(client):
    assert client.get("/students").status_code == 401
    res = client.get("/students", headers={"Authorization": "Token abc"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid authorization scheme."


def test_student_crud_and_qr(client, auth_headers):
    student = _create_student(client, auth_headers)
    assert student["qr_code"] == "QR-2024-0001"

    res = client.post(
        "/students",
        json={"student_code": "2024-0001", "name": "Dup", "department": "CCS", "program": "BSIT"},
        headers=auth_headers,
    )
    assert res.status_code == 409

    res = client.get("/students/lookup", params={"qr_code": "QR-2024-0001"}, headers=auth_headers)
    assert res.json()["found"] is True
    res = client.get("/students/lookup", params={"qr_code": "QR-missing"}, headers=auth_headers)
    assert res.json() == {"found": False}

    res = client.patch(f"/students/{student['id']}", json={"program": "BSCS"}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["program"] == "BSCS"
    assert res.json()["department"] == "CCS"

    res = client.get(f"/students/{student['id']}/qr", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["image"].startswith("data:image/png;base64,")

    res = client.get(f"/students/{student['id']}/qr", params={"format": "png"}, headers=auth_headers)
    assert res.headers["content-type"] == "image/png"

    res = client.delete(f"/students/{student['id']}", headers=auth_headers)
    assert res.status_code == 200
    assert client.get(f"/students/{student['id']}", headers=auth_headers).status_code == 404


def test_students_sorted_by_name_stably(client, auth_headers):
    _create_student(client, auth_headers, code="A-1", name="Cruz")
    _create_student(client, auth_headers, code="A-2", name="Abad")
    _create_student(client, auth_headers, code="A-3", name="Cruz")

    res = client.get("/students", headers=auth_headers)
    assert [s["student_code"] for s in res.json()] == ["A-2", "A-1", "A-3"]


def test_events_listing_and_status(client, auth_headers):
    _create_event(client, auth_headers, name="Old", event_date="2026-01-05", status="completed")
    newer = _create_event(client, auth_headers, name="New", event_date="2026-10-17")

    res = client.get("/events", headers=auth_headers)
    assert [e["name"] for e in res.json()] == ["New", "Old"]

    res = client.get("/events/active", headers=auth_headers)
    assert [e["id"] for e in res.json()] == [newer["id"]]

    res = client.patch(f"/events/{newer['id']}", json={"status": "completed"}, headers=auth_headers)
    assert res.json()["status"] == "completed"

    res = client.post("/events", json={"name": "Bad", "date": "17/10/2026"}, headers=auth_headers)
    assert res.status_code == 400


def test_scan_flow_with_reentry(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)
    body = {"qr_code": student["qr_code"], "event_id": event["id"], "time_period": "morning"}

    res = client.post("/attendance/scan", json={**body, "action": "time_in"}, headers=_station(auth_headers, "g1"))
    assert res.status_code == 200
    first = res.json()
    assert first["decision_code"] == "TIME_IN_SET"
    assert first["verified"] is True
    assert "error" not in first

    res = client.post("/attendance/scan", json={**body, "action": "time_out"}, headers=_station(auth_headers, "g2"))
    assert res.json()["decision_code"] == "TIME_OUT_SET"

    res = client.post("/attendance/scan", json={**body, "action": "time_out"}, headers=_station(auth_headers, "g3"))
    assert res.status_code == 409
    assert res.json() == {
        "detail": "No active AM time-in found. Record a AM time-in first.",
        "decision_code": "NO_OPEN_SESSION",
    }

    res = client.post("/attendance/scan", json={**body, "action": "time_in"}, headers=_station(auth_headers, "g4"))
    second = res.json()
    assert second["record"]["id"] != first["record"]["id"]

    res = client.get(f"/events/{event['id']}/attendance", headers=auth_headers)
    payload = res.json()
    assert payload["consolidated"][0]["morning_record"]["id"] == second["record"]["id"]
    assert [r["id"] for r in payload["records"]] == [first["record"]["id"], second["record"]["id"]]

    res = client.get(f"/events/{event['id']}/summary", headers=auth_headers)
    assert res.json() == {
        "event_id": event["id"],
        "unique_attendees": 1,
        "present": 1,
        "left": 1,
        "record_count": 2,
    }


def test_duplicate_scan_on_same_station_is_ignored(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)
    body = {"qr_code": student["qr_code"], "event_id": event["id"], "action": "time_in"}
    headers = _station(auth_headers, "front-gate")

    assert client.post("/attendance/scan", json=body, headers=headers).json()["decision_code"] == "TIME_IN_SET"
    res = client.post("/attendance/scan", json=body, headers=headers)
    assert res.status_code == 200
    assert res.json()["decision_code"] == "DUPLICATE_IGNORED"
    assert res.json()["verified"] is False
    assert len(db.get_attendance_by_event(event["id"])) == 1


def test_unknown_code_and_missing_event(client, auth_headers):
    event = _create_event(client, auth_headers)

    res = client.post(
        "/attendance/scan",
        json={"qr_code": "QR-ghost", "event_id": event["id"], "action": "time_in"},
        headers=_station(auth_headers, "a"),
    )
    assert res.status_code == 404
    assert res.json()["decision_code"] == "UNKNOWN_STUDENT"

    res = client.post(
        "/attendance/scan",
        json={"qr_code": "QR-ghost", "action": "time_in"},
        headers=_station(auth_headers, "b"),
    )
    assert res.status_code == 400
    assert res.json()["decision_code"] == "MISSING_EVENT"

    res = client.post(
        "/attendance/scan",
        json={"qr_code": "QR-ghost", "event_id": 9999, "action": "time_in"},
        headers=_station(auth_headers, "c"),
    )
    assert res.status_code == 404


def test_scan_frame_decodes_qr_image(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)
    image = generate_qr_png(student["qr_code"], border=4)

    res = client.post(
        "/attendance/scan/frame",
        files={"file": ("frame.png", image, "image/png")},
        data={"action": "time_in", "event_id": str(event["id"]), "time_period": "afternoon"},
        headers=auth_headers,
    )
    assert res.status_code == 200
    body = res.json()
    assert body["decoded"] is True
    assert body["decision_code"] == "TIME_IN_SET"
    assert body["time_period"] == "afternoon"


def test_scan_frame_rejects_non_images(client, auth_headers):
    res = client.post(
        "/attendance/scan/frame",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"action": "time_in"},
        headers=auth_headers,
    )
    assert res.status_code == 400
    assert res.json()["detail"] == "Upload JPG/PNG only."


def test_officer_pin_login_binds_event(client, auth_headers):
    event = _create_event(client, auth_headers)
    student = _create_student(client, auth_headers)
    today = date.today().isoformat()

    res = client.post(
        "/pins",
        json={"email": "Officer@School.edu", "pin": "4821", "role": "usc_officer", "event_id": event["id"]},
        headers=auth_headers,
    )
    assert res.status_code == 200
    assert res.json()["valid_date"] == today
    assert res.json()["email"] == "officer@school.edu"

    res = client.post("/auth/pin", json={"email": "officer@school.edu", "pin": "0000", "role": "usc_officer"})
    assert res.status_code == 401

    res = client.post("/auth/pin", json={"email": "officer@school.edu", "pin": "4821", "role": "usc_officer"})
    assert res.status_code == 200
    login = res.json()
    assert login["role"] == "usc_officer"
    assert login["event_id"] == event["id"]
    officer = {"Authorization": f"Bearer {login['access_token']}"}

    res = client.post(
        "/attendance/scan",
        json={"qr_code": student["qr_code"], "action": "time_in"},
        headers=officer,
    )
    assert res.status_code == 200
    assert res.json()["event_id"] == event["id"]

    res = client.get("/officers", headers=auth_headers)
    assert res.json()[0]["email"] == "officer@school.edu"


def test_pin_validation(client, auth_headers):
    res = client.post(
        "/pins",
        json={"email": "officer@school.edu", "pin": "12a4", "role": "rotc_officer"},
        headers=auth_headers,
    )
    assert res.status_code == 400

    res = client.post(
        "/pins",
        json={"email": "not-an-email", "pin": "1234", "role": "rotc_officer"},
        headers=auth_headers,
    )
    assert res.status_code == 400


def test_officer_capabilities(client, auth_headers):
    officer = _officer_headers()

    assert client.get("/students", headers=officer).status_code == 200
    assert client.post("/events", json={"name": "X", "date": "2026-10-17"}, headers=officer).status_code == 403
    assert client.get("/pins", headers=officer).status_code == 403

    student = _create_student(client, officer)
    res = client.delete(f"/students/{student['id']}", headers=officer)
    assert res.status_code == 403

    res = client.get("/students", headers=_officer_headers(role="student"))
    assert res.status_code == 403


def test_delete_event_cascades(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)
    client.post(
        "/attendance/scan",
        json={"qr_code": student["qr_code"], "event_id": event["id"], "action": "time_in"},
        headers=auth_headers,
    )
    db.upsert_daily_pin(
        email="officer@school.edu",
        pin="1111",
        valid_date=date.today().isoformat(),
        role="rotc_officer",
        event_id=event["id"],
    )

    res = client.delete(f"/events/{event['id']}", headers=auth_headers)
    assert res.status_code == 200
    assert db.get_attendance_by_event(event["id"]) == []
    assert db.get_daily_pins()[0]["event_id"] is None
    assert client.get(f"/events/{event['id']}/summary", headers=auth_headers).status_code == 404


def test_delete_attendance_record(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)
    res = client.post(
        "/attendance/scan",
        json={"qr_code": student["qr_code"], "event_id": event["id"], "action": "time_in"},
        headers=auth_headers,
    )
    record_id = res.json()["record"]["id"]

    assert client.delete(f"/attendance/{record_id}", headers=auth_headers).status_code == 200
    assert client.delete(f"/attendance/{record_id}", headers=auth_headers).status_code == 404
    res = client.get(f"/events/{event['id']}/summary", headers=auth_headers)
    assert res.json()["record_count"] == 0


def test_event_report_joins_students(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)
    client.post(
        "/attendance/scan",
        json={
            "qr_code": student["qr_code"],
            "event_id": event["id"],
            "action": "time_in",
            "time_period": "afternoon",
        },
        headers=auth_headers,
    )

    res = client.get(f"/reports/events/{event['id']}", headers=auth_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["unique_attendees"] == 1
    assert body["rows"][0]["name"] == "Ana Reyes"
    assert body["rows"][0]["period"] == "PM"


def test_storage_failure_returns_503(client, auth_headers, monkeypatch):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)

    def broken(**_kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "insert_attendance_record", broken)
    res = client.post(
        "/attendance/scan",
        json={"qr_code": student["qr_code"], "event_id": event["id"], "action": "time_in"},
        headers=auth_headers,
    )
    assert res.status_code == 503
    assert res.json()["decision_code"] == "STORAGE_ERROR"


def test_live_updates_websocket(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)
    token = auth_headers["Authorization"].split(" ", 1)[1]

    with client.websocket_connect(f"/ws/events/{event['id']}?token={token}") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "snapshot"
        assert snapshot["view"]["unique_attendees"] == 0

        client.post(
            "/attendance/scan",
            json={"qr_code": student["qr_code"], "event_id": event["id"], "action": "time_in"},
            headers=auth_headers,
        )
        update = ws.receive_json()
        assert update["type"] == "change"
        assert update["change"]["type"] == "INSERT"
        assert update["unique_attendees"] == 1


def test_additional_admin_can_log_in(client):
    db.create_admin_user("registrar", "s3cret")

    res = client.post("/auth/login", json={"username": "registrar", "password": "s3cret"})
    assert res.status_code == 200
    assert res.json()["role"] == "super_admin"


def test_update_event_status_rejects_unknown_status(temp_db, make_event):
    event = make_event()
    with pytest.raises(ValueError):
        db.update_event_status(event["id"], "cancelled")


def test_rejected_duplicate_leaves_database_writable(client, auth_headers):
    student = _create_student(client, auth_headers)
    event = _create_event(client, auth_headers)

    res = client.post(
        "/students",
        json={"student_code": "2024-0001", "name": "Dup", "department": "CCS", "program": "BSIT"},
        headers=auth_headers,
    )
    assert res.status_code == 409

    res = client.patch(f"/students/{student['id']}", json={"program": "BSCS"}, headers=auth_headers)
    assert res.status_code == 200

    res = client.post(
        "/attendance/scan",
        json={"qr_code": student["qr_code"], "event_id": event["id"], "action": "time_in"},
        headers=auth_headers,
    )
    assert res.status_code == 200
    assert res.json()["decision_code"] == "TIME_IN_SET"


def test_failed_insert_rolls_back(temp_db, make_student):
    make_student(student_code="2024-0001")
    with pytest.raises(sqlite3.IntegrityError):
        db.add_student("2024-0001", "Dup", "CCS", "BSIT")

    event = db.add_event("Orientation", "2026-10-17")
    assert db.get_event_by_id(event["id"]) == event


def test_pin_login_without_role_picks_highest_role(client, auth_headers):
    today = date.today().isoformat()
    for role in ("usc_officer", "rotc_officer"):
        db.upsert_daily_pin(email="officer@school.edu", pin="5150", valid_date=today, role=role)

    res = client.post("/auth/pin", json={"email": "officer@school.edu", "pin": "5150"})
    assert res.status_code == 200
    assert res.json()["role"] == "rotc_officer"

    res = client.post("/auth/pin", json={"email": "officer@school.edu", "pin": "9999"})
    assert res.status_code == 401


def test_shared_pin_binds_each_officer_to_own_event(client, auth_headers):
    first = _create_event(client, auth_headers, name="Morning Drill")
    second = _create_event(client, auth_headers, name="Assembly")
    today = date.today().isoformat()
    db.upsert_daily_pin(
        email="first@school.edu", pin="2468", valid_date=today, role="usc_officer", event_id=first["id"]
    )
    db.upsert_daily_pin(
        email="second@school.edu", pin="2468", valid_date=today, role="usc_officer", event_id=second["id"]
    )

    for email, event in (("first@school.edu", first), ("second@school.edu", second)):
        res = client.post("/auth/pin", json={"email": email, "pin": "2468", "role": "usc_officer"})
        assert res.status_code == 200
        assert res.json()["event_id"] == event["id"]


def test_student_self_registration_and_own_qr(client, auth_headers):
    res = client.post(
        "/register",
        json={"student_code": " 2024-0099 ", "name": "Lia Santos", "department": "CCS", "program": "BSIT"},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["role"] == "student"
    assert body["qr_code"] == "QR-2024-0099"
    assert body["student"]["name"] == "Lia Santos"
    assert body["image"].startswith("data:image/png;base64,")

    mine = {"Authorization": f"Bearer {body['access_token']}"}
    res = client.get("/me/qr", headers=mine)
    assert res.status_code == 200
    assert res.json()["qr_code"] == "QR-2024-0099"
    assert client.get("/me/qr", params={"format": "png"}, headers=mine).headers["content-type"] == "image/png"

    # registered students can only see their own code
    assert client.get("/students", headers=mine).status_code == 403
    assert client.get("/me/qr", headers=auth_headers).status_code == 403

    res = client.post(
        "/register",
        json={"student_code": "2024-0099", "name": "Other", "department": "CCS", "program": "BSIT"},
    )
    assert res.status_code == 409


def test_own_qr_for_removed_student_is_not_found(client, auth_headers):
    res = client.post(
        "/register",
        json={"student_code": "2024-0100", "name": "Gone", "department": "CCS", "program": "BSIT"},
    )
    body = res.json()
    client.delete(f"/students/{body['student']['id']}", headers=auth_headers)

    res = client.get("/me/qr", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert res.status_code == 404


def test_event_report_lists_absent_students(client, auth_headers):
    present = _create_student(client, auth_headers, code="2024-0001", name="Ana Reyes")
    _create_student(client, auth_headers, code="2024-0002", name="Zed Cruz")
    _create_student(client, auth_headers, code="2024-0003", name="Ben Lim")
    event = _create_event(client, auth_headers)
    client.post(
        "/attendance/scan",
        json={"qr_code": present["qr_code"], "event_id": event["id"], "action": "time_in"},
        headers=auth_headers,
    )

    res = client.get(f"/reports/events/{event['id']}", headers=auth_headers)
    assert [s["name"] for s in res.json()["absent"]] == ["Ben Lim", "Zed Cruz"]
