from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from backend.services.scans import submit_scan

router = APIRouter(prefix="/student")


class MarkAttendanceRequest(BaseModel):
    qr_data: str
    student_id: str


@router.post("/mark-attendance")
def mark_attendance(payload: MarkAttendanceRequest):
    student_id = payload.student_id.strip()
    if not payload.qr_data.strip() or not student_id:
        raise HTTPException(status_code=400, detail="Missing required data.")

    # Rejections are regular outcomes of a scan and come back as 200 with a reason.
    return submit_scan(payload.qr_data, student_id)
