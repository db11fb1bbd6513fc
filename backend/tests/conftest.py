from datetime import datetime

import pytest

import backend.config as config
import database.db as db
from backend.services.schedule import day_of_week
from backend.services.sessions import shutdown_scheduler

# Monday 10:00, inside the 09:30-10:30 slot seeded below.
T0 = datetime(2026, 10, 19, 10, 0, 0)


@pytest.fixture()
def store(tmp_path, monkeypatch):
    test_db = tmp_path / "quikattend_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)
    monkeypatch.setattr(config, "QR_WINDOW_SECONDS", 60.0)
    monkeypatch.setattr(config, "TOKEN_EXPIRY_SECONDS", 60.0)

    db.create_tables()
    yield test_db
    shutdown_scheduler()


@pytest.fixture()
def cohort(store):
    """Teacher T1, students S1-S3 in 1st/CSE, S4 in 2nd/CSE, admin A1 and a slot covering T0."""
    db.add_user("A1", "System Admin", "ADMIN", email="admin@quikattend.com")
    db.add_user("T1", "Ravi Kumar", "TEACHER", email="ravi.kumar@quikattend.com")
    db.add_user("T2", "Anita Sharma", "TEACHER", email="anita.sharma@quikattend.com")
    db.add_user("S1", "Amit Verma", "STUDENT", year="1st", branch="CSE")
    db.add_user("S2", "Priya Nair", "STUDENT", year="1st", branch="CSE")
    db.add_user("S3", "Neha Gupta", "STUDENT", year="1st", branch="CSE")
    db.add_user("S4", "Sneha Patel", "STUDENT", year="2nd", branch="CSE")
    timeslot_id = db.add_timeslot("1st", "CSE", day_of_week(T0), "09:30", "10:30")
    return {"timeslot_id": timeslot_id, "students": ["S1", "S2", "S3"]}


@pytest.fixture()
def open_slot(cohort):
    """A slot covering the whole of the real current day, for wall-clock paths."""
    return db.add_timeslot("1st", "CSE", day_of_week(datetime.now()), "00:00", "23:59")


@pytest.fixture()
def t0():
    return T0
