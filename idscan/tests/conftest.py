import pytest
from fastapi.testclient import TestClient

import database.db as db
import idscan.config as config
from database.realtime import FEED
from idscan.services import runtime


@pytest.fixture()
def temp_db(tmp_path, monkeypatch):
    test_db = tmp_path / "idscan_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    runtime.reset()
    FEED.reset()
    db.create_tables()
    yield test_db
    runtime.reset()
    FEED.reset()


@pytest.fixture()
def client(temp_db):
    import idscan.main as main

    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def auth_headers(client):
    res = client.post(
        "/auth/login",
        json={
            "username": config.ADMIN_USERNAME,
            "password": config.ADMIN_PASSWORD,
        },
    )
    assert res.status_code == 200
    token = res.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_student(temp_db):
    counter = {"n": 0}

    def _make(name: str | None = None, student_code: str | None = None):
        counter["n"] += 1
        n = counter["n"]
        return db.add_student(
            student_code or f"2024-{n:04d}",
            name or f"Student {n}",
            "CCS",
            "BSIT",
        )

    return _make


@pytest.fixture()
def make_event(temp_db):
    def _make(name: str = "Orientation", date: str = "2026-10-17", status: str = "active"):
        return db.add_event(name, date, status)

    return _make
