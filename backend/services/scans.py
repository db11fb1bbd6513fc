import logging
from datetime import datetime

import backend.config as config
from backend.outcomes import (
    STEADY_STATE_CODES,
    ErrorCode,
    ScanResult,
    rejected_scan,
)
from backend.security import decode_scan_token, to_millis
from database.db import (
    SessionRow,
    find_presence_record,
    from_iso,
    get_session_by_id,
    get_timeslot_by_id,
    get_user,
    insert_presence_record_if_absent,
    to_iso,
    write_transaction,
)

logger = logging.getLogger(__name__)


def _reject(code: ErrorCode, student_id: str, session_id: int | None = None) -> ScanResult:
    level = logging.INFO if code in STEADY_STATE_CODES else logging.WARNING
    logger.log(level, "Scan rejected (%s): student=%s session=%s", code, student_id, session_id)
    return rejected_scan(code, session_id)


def _window_open(session: SessionRow, moment: datetime) -> bool:
    if session["status"] != "ACTIVE":
        return False
    active_until = from_iso(session["active_until"])
    return active_until is not None and moment <= active_until


def _accepted(session: SessionRow) -> ScanResult:
    teacher = get_user(session["teacher_id"])
    teacher_name = teacher["name"] if teacher else session["teacher_id"]
    timeslot = get_timeslot_by_id(session["timeslot_id"])
    window = f"{timeslot['start_time']} - {timeslot['end_time']}" if timeslot else ""
    return {
        "accepted": True,
        "reason": None,
        "message": f"Attendance marked successfully for {session['subject']} by {teacher_name}",
        "session_id": session["id"],
        "class_details": {
            "subject": session["subject"],
            "teacher": teacher_name,
            "time": window,
        },
    }


def submit_scan(token: str | None, student_id: str, now: datetime | None = None) -> ScanResult:
    """
    Validate a scanned token for a student and record them PRESENT.

    Checks run in a fixed order and the first failure decides the reason:
    token format, token age, session existence, issuing teacher, session
    window, student role, cohort membership, existing record.
    """
    moment = now or datetime.now()

    claims = decode_scan_token(token)
    if claims is None:
        return _reject("MalformedToken", student_id)

    session_id = claims["sessionId"]
    expiry_millis = int(float(config.TOKEN_EXPIRY_SECONDS) * 1000)
    if to_millis(moment) > claims["issuedAtMillis"] + expiry_millis:
        return _reject("TokenExpired", student_id, session_id)

    session = get_session_by_id(session_id)
    if session is None:
        return _reject("SessionNotFound", student_id, session_id)

    if session["teacher_id"] != claims["teacherId"]:
        return _reject("TokenSessionMismatch", student_id, session_id)

    if not _window_open(session, moment):
        return _reject("SessionNotActive", student_id, session_id)

    student = get_user(student_id)
    if student is None or student["role"] != "STUDENT":
        return _reject("InvalidStudent", student_id, session_id)

    if student["year"] != session["year"] or student["branch"] != session["branch"]:
        return _reject("NotEnrolled", student_id, session_id)

    if find_presence_record(student_id, session_id) is not None:
        return _reject("AlreadyMarked", student_id, session_id)

    with write_transaction() as conn:
        # Re-read under the write lock: finalize may have closed the session
        # since the checks above.
        current = get_session_by_id(session_id, conn=conn)
        if current is None or not _window_open(current, moment):
            inserted = None
        else:
            inserted = insert_presence_record_if_absent(
                student_id,
                session_id,
                "PRESENT",
                created_at=to_iso(moment),
                conn=conn,
            )

    if inserted is None:
        return _reject("SessionNotActive", student_id, session_id)
    if not inserted:
        return _reject("AlreadyMarked", student_id, session_id)

    logger.info("Student %s marked PRESENT for session %s", student_id, session_id)
    return _accepted(session)
