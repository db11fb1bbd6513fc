from datetime import date as date_type

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from backend.routers.errors import raise_for_failure
from backend.services.sessions import cancel_scheduled_sessions, recover_overdue_sessions

router = APIRouter(prefix="/admin")


class MarkCancelledRequest(BaseModel):
    year: str
    branch: str
    date: date_type


@router.post("/mark-cancelled")
def mark_cancelled(payload: MarkCancelledRequest):
    """
    Cancel the SCHEDULED classes of a cohort on a date. Those rows come from
    the external class-planning store; this service never plans sessions
    itself, so the call returns 404 when nothing was planned for that date.
    """
    year = payload.year.strip()
    branch = payload.branch.strip()
    if not year or not branch:
        raise HTTPException(status_code=400, detail="Missing required fields.")

    result = cancel_scheduled_sessions(year, branch, payload.date.isoformat())
    if not result["ok"]:
        raise_for_failure(result)
    return {
        "message": result["message"],
        "cancelled_classes": result["cancelled_sessions"],
    }


@router.post("/attendance/maintenance")
def run_attendance_maintenance():
    stats = recover_overdue_sessions()
    return {
        "ok": True,
        "message": "Attendance maintenance completed.",
        **stats,
    }
