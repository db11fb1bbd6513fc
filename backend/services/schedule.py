from datetime import datetime

from database.db import TimeslotRow, find_timeslot


def day_of_week(moment: datetime) -> int:
    """Timetable day index, 0 = Sunday through 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def resolve_current_slot(year: str, branch: str, now: datetime | None = None) -> TimeslotRow | None:
    """
    Find the timetable slot of the (year, branch) cohort covering `now`.

    Both bounds are inclusive at minute precision. If the timetable ever holds
    overlapping slots, the one starting earliest wins.
    """
    moment = now or datetime.now()
    return find_timeslot(year, branch, day_of_week(moment), moment.strftime("%H:%M"))
