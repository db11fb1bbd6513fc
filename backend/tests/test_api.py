import pytest
from fastapi.testclient import TestClient

import backend.main as main
import database.db as db


@pytest.fixture()
def client(store):
    with TestClient(main.app) as c:
        yield c


def _generate(client, **overrides):
    payload = {"teacher_id": "T1", "subject": "Maths", "year": "1st", "branch": "CSE"}
    payload.update(overrides)
    return client.post("/teacher/generate-qr", json=payload)


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_attendance_config_reports_windows(client):
    res = client.get("/config/attendance")
    assert res.status_code == 200
    body = res.json()
    assert body["qr_window_seconds"] == 60.0
    assert body["token_expiry_seconds"] == 60.0


def test_generate_qr_requires_fields(client, open_slot):
    res = _generate(client, subject="  ")
    assert res.status_code == 400
    assert res.json()["detail"] == "Missing required fields."


def test_generate_qr_without_slot(client, cohort):
    res = _generate(client, year="4th", branch="ME")
    assert res.status_code == 404
    assert res.json()["detail"] == {
        "error": "NoActiveSlot",
        "message": "No class scheduled right now.",
    }


def test_full_attendance_flow(client, open_slot):
    res = _generate(client)
    assert res.status_code == 200
    body = res.json()
    assert body["qr_code"].startswith("data:image/png;base64,")
    assert body["total_students"] == 3
    class_id = body["class_id"]

    refreshed = _generate(client)
    assert refreshed.status_code == 200
    assert refreshed.json()["class_id"] == class_id

    scan = client.post(
        "/student/mark-attendance",
        json={"qr_data": refreshed.json()["qr_data"], "student_id": "S1"},
    )
    assert scan.status_code == 200
    assert scan.json()["accepted"] is True
    assert scan.json()["class_details"]["teacher"] == "Ravi Kumar"

    duplicate = client.post(
        "/student/mark-attendance",
        json={"qr_data": refreshed.json()["qr_data"], "student_id": "S1"},
    )
    assert duplicate.status_code == 200
    assert duplicate.json()["accepted"] is False
    assert duplicate.json()["reason"] == "AlreadyMarked"

    count = client.get(f"/teacher/attendance-count/{class_id}")
    assert count.status_code == 200
    assert count.json() == {"present": 1, "total": 3, "status": "ACTIVE"}

    stop = client.post(f"/teacher/stop-qr/{class_id}")
    assert stop.status_code == 200
    assert stop.json() == {
        "message": "QR code stopped successfully",
        "status": "COMPLETED",
        "total_students": 3,
        "present_students": 1,
        "absent_students": 2,
    }

    again = client.post(f"/teacher/stop-qr/{class_id}")
    assert again.status_code == 400
    assert again.json()["detail"]["error"] == "NotActive"

    reopen = _generate(client)
    assert reopen.status_code == 409
    assert reopen.json()["detail"]["error"] == "SessionAlreadyFinalized"


def test_mark_attendance_rejects_garbage(client, cohort):
    res = client.post("/student/mark-attendance", json={"qr_data": "garbage", "student_id": "S1"})
    assert res.status_code == 200
    assert res.json()["reason"] == "MalformedToken"

    res = client.post("/student/mark-attendance", json={"qr_data": " ", "student_id": "S1"})
    assert res.status_code == 400


def test_stop_and_count_unknown_class(client, store):
    assert client.post("/teacher/stop-qr/77").status_code == 404
    assert client.get("/teacher/attendance-count/77").status_code == 404


def test_mark_cancelled(client, cohort):
    db.plan_session("T1", "Maths", "1st", "CSE", cohort["timeslot_id"], "2026-10-19")

    res = client.post("/admin/mark-cancelled", json={"year": "1st", "branch": "CSE", "date": "2026-10-19"})
    assert res.status_code == 200
    assert res.json() == {"message": "1 classes marked as cancelled", "cancelled_classes": 1}

    res = client.post("/admin/mark-cancelled", json={"year": "1st", "branch": "CSE", "date": "2026-10-19"})
    assert res.status_code == 404
    assert res.json()["detail"]["error"] == "NoScheduledSessions"


def test_maintenance_sweep(client, store):
    res = client.post("/admin/attendance/maintenance")
    assert res.status_code == 200
    assert res.json() == {
        "ok": True,
        "message": "Attendance maintenance completed.",
        "finalized": 0,
        "rearmed": 0,
    }
