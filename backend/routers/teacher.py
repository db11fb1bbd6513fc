from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from backend.qr import render_qr_data_url
from backend.routers.errors import raise_for_failure
from backend.services.sessions import attendance_count, start_session, stop_session

router = APIRouter(prefix="/teacher")


class GenerateQrRequest(BaseModel):
    teacher_id: str
    subject: str
    year: str
    branch: str


@router.post("/generate-qr")
def generate_qr(payload: GenerateQrRequest):
    teacher_id = payload.teacher_id.strip()
    subject = payload.subject.strip()
    year = payload.year.strip()
    branch = payload.branch.strip()

    if not teacher_id or not subject or not year or not branch:
        raise HTTPException(status_code=400, detail="Missing required fields.")

    result = start_session(teacher_id, subject, year, branch)
    if not result["ok"]:
        raise_for_failure(result)

    return {
        "qr_code": render_qr_data_url(result["token"]),
        "qr_data": result["token"],
        "class_id": result["session_id"],
        "total_students": result["cohort_size"],
        "expiry_time": result["expires_at"],
    }


@router.post("/stop-qr/{session_id}")
def stop_qr(session_id: int):
    result = stop_session(session_id)
    if not result["ok"]:
        raise_for_failure(result)

    return {
        "message": "QR code stopped successfully",
        "status": "COMPLETED",
        "total_students": result["total_cohort"],
        "present_students": result["present_count"],
        "absent_students": result["absent_count"],
    }


@router.get("/attendance-count/{session_id}")
def live_attendance_count(session_id: int):
    result = attendance_count(session_id)
    if not result["ok"]:
        raise_for_failure(result)
    return {"present": result["present"], "total": result["total"], "status": result["status"]}
