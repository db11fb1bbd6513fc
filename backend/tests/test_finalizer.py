from datetime import timedelta

import database.db as db
from backend.services.finalizer import finalize
from backend.services.scans import submit_scan
from backend.services.sessions import start_session


def test_scan_then_timeout_scenario(cohort, t0):
    started = start_session("T1", "Maths", "1st", "CSE", now=t0)
    session_id = started["session_id"]

    scan = submit_scan(started["token"], "S1", now=t0 + timedelta(seconds=10))
    assert scan["accepted"] is True

    summary = finalize(session_id, now=t0 + timedelta(seconds=60))
    assert summary["ok"] is True
    assert summary["error"] is None
    assert summary["total_cohort"] == 3
    assert summary["present_count"] == 1
    assert summary["absent_count"] == 2
    assert summary["present_count"] + summary["absent_count"] == summary["total_cohort"]

    statuses = {r["student_id"]: r["status"] for r in db.list_presence_records(session_id)}
    assert statuses == {"S1": "PRESENT", "S2": "ABSENT", "S3": "ABSENT"}

    session = db.get_session_by_id(session_id)
    assert session["status"] == "COMPLETED"
    assert session["finalized_at"] == db.to_iso(t0 + timedelta(seconds=60))
    assert (session["total_count"], session["present_count"], session["absent_count"]) == (3, 1, 2)


def test_second_finalize_reports_same_counts(cohort, t0):
    started = start_session("T1", "Maths", "1st", "CSE", now=t0)
    submit_scan(started["token"], "S3", now=t0 + timedelta(seconds=2))

    first = finalize(started["session_id"], now=t0 + timedelta(seconds=60))
    second = finalize(started["session_id"], now=t0 + timedelta(seconds=61))

    assert second["ok"] is False
    assert second["error"] == "AlreadyFinalized"
    for key in ("total_cohort", "present_count", "absent_count"):
        assert second[key] == first[key]
    assert len(db.list_presence_records(started["session_id"])) == 3


def test_existing_present_row_is_never_overwritten(cohort, t0):
    started = start_session("T1", "Maths", "1st", "CSE", now=t0)
    session_id = started["session_id"]
    # A scan that committed just before the finalizer took the write lock.
    assert db.insert_presence_record_if_absent("S2", session_id, "PRESENT") is True
    assert db.insert_presence_record_if_absent("S2", session_id, "ABSENT") is False

    summary = finalize(session_id, now=t0 + timedelta(seconds=60))
    assert summary["present_count"] == 1
    assert summary["absent_count"] == 2
    assert db.find_presence_record("S2", session_id)["status"] == "PRESENT"


def test_students_outside_cohort_are_not_marked(cohort, t0):
    started = start_session("T1", "Maths", "1st", "CSE", now=t0)
    finalize(started["session_id"], now=t0 + timedelta(seconds=60))
    assert db.find_presence_record("S4", started["session_id"]) is None


def test_empty_cohort_finalizes_cleanly(cohort, t0):
    from backend.services.schedule import day_of_week

    db.add_timeslot("3rd", "ECE", day_of_week(t0), "09:00", "11:00")
    started = start_session("T1", "Signals", "3rd", "ECE", now=t0)
    assert started["cohort_size"] == 0

    summary = finalize(started["session_id"], now=t0 + timedelta(seconds=60))
    assert summary["ok"] is True
    assert (summary["total_cohort"], summary["present_count"], summary["absent_count"]) == (0, 0, 0)


def test_finalize_requires_active_session(cohort, t0):
    planned = db.plan_session("T1", "Maths", "1st", "CSE", cohort["timeslot_id"], "2026-10-26")
    result = finalize(planned, now=t0)
    assert result["ok"] is False
    assert result["error"] == "NotActive"
    assert db.get_session_by_id(planned)["status"] == "SCHEDULED"
    assert db.list_presence_records(planned) == []


def test_finalize_unknown_session(store):
    result = finalize(12345)
    assert result["ok"] is False
    assert result["error"] == "SessionNotFound"


def test_due_claim_leaves_open_window_alone(cohort, t0):
    started = start_session("T1", "Maths", "1st", "CSE", now=t0)
    session_id = started["session_id"]

    early = finalize(session_id, now=t0 + timedelta(seconds=10), due_before=t0 + timedelta(seconds=10))
    assert early["ok"] is False
    assert early["error"] == "NotDue"
    assert db.get_session_by_id(session_id)["status"] == "ACTIVE"
    assert db.list_presence_records(session_id) == []

    due = finalize(session_id, now=t0 + timedelta(seconds=60), due_before=t0 + timedelta(seconds=60))
    assert due["ok"] is True
    assert due["absent_count"] == 3
