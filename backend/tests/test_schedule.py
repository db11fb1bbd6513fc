from datetime import datetime, timedelta

import database.db as db
from backend.services.schedule import day_of_week, resolve_current_slot


def test_day_of_week_counts_from_sunday():
    assert day_of_week(datetime(2026, 10, 18, 12, 0)) == 0
    assert day_of_week(datetime(2026, 10, 19, 12, 0)) == 1
    assert day_of_week(datetime(2026, 10, 24, 12, 0)) == 6


def test_resolves_slot_covering_moment(cohort, t0):
    slot = resolve_current_slot("1st", "CSE", t0)
    assert slot is not None
    assert slot["id"] == cohort["timeslot_id"]


def test_slot_bounds_are_inclusive(cohort, t0):
    start = t0.replace(hour=9, minute=30, second=0)
    end = t0.replace(hour=10, minute=30, second=59)
    assert resolve_current_slot("1st", "CSE", start)["id"] == cohort["timeslot_id"]
    assert resolve_current_slot("1st", "CSE", end)["id"] == cohort["timeslot_id"]
    assert resolve_current_slot("1st", "CSE", start - timedelta(minutes=1)) is None
    assert resolve_current_slot("1st", "CSE", end + timedelta(seconds=1)) is None


def test_no_slot_on_other_day_or_cohort(cohort, t0):
    assert resolve_current_slot("1st", "CSE", t0 + timedelta(days=1)) is None
    assert resolve_current_slot("2nd", "CSE", t0) is None


def test_overlapping_slots_pick_earliest_start(cohort, t0):
    later = db.add_timeslot("1st", "CSE", day_of_week(t0), "09:45", "10:15")
    earlier = db.add_timeslot("1st", "CSE", day_of_week(t0), "09:00", "10:05")

    slot = resolve_current_slot("1st", "CSE", t0)
    assert slot["id"] == earlier
    assert slot["id"] != later
