import logging
from datetime import datetime

from backend.outcomes import ERROR_MESSAGES, ErrorCode, FinalizeSummary
from database.db import (
    complete_due_session,
    find_cohort_members,
    get_session_by_id,
    insert_presence_record_if_absent,
    list_presence_records,
    record_session_summary,
    set_session_status,
    to_iso,
    write_transaction,
)

logger = logging.getLogger(__name__)


def _summary(
    session_id: int,
    *,
    error: ErrorCode | None = None,
    total: int = 0,
    present: int = 0,
    absent: int = 0,
) -> FinalizeSummary:
    if error is None:
        message = f"Attendance finalized: {present} present, {absent} absent of {total}."
    else:
        message = ERROR_MESSAGES[error]
    return {
        "ok": error is None,
        "error": error,
        "message": message,
        "session_id": session_id,
        "total_cohort": total,
        "present_count": present,
        "absent_count": absent,
    }


def finalize(
    session_id: int,
    now: datetime | None = None,
    due_before: datetime | None = None,
) -> FinalizeSummary:
    """
    Close an ACTIVE session and mark every cohort member without a presence
    record as ABSENT.

    The status claim, the absentee inserts and the stored summary commit in
    one write transaction, so a session is finalized at most once. A repeated
    call reports `AlreadyFinalized` together with the counts of the first run.

    With `due_before`, the claim only succeeds if the stored window ended at
    or before that moment; a window refreshed in the meantime yields `NotDue`.
    """
    moment = now or datetime.now()
    stamp = to_iso(moment)

    with write_transaction() as conn:
        session = get_session_by_id(session_id, conn=conn)
        if session is None:
            return _summary(session_id, error="SessionNotFound")

        if session["status"] == "COMPLETED":
            logger.debug("Session %s already finalized; skipping", session_id)
            return _summary(
                session_id,
                error="AlreadyFinalized",
                total=session["total_count"] or 0,
                present=session["present_count"] or 0,
                absent=session["absent_count"] or 0,
            )

        if due_before is None:
            claimed = set_session_status(session_id, "COMPLETED", expected="ACTIVE", conn=conn)
        else:
            claimed = complete_due_session(session_id, to_iso(due_before), conn=conn)
        if not claimed:
            if due_before is not None and session["status"] == "ACTIVE":
                return _summary(session_id, error="NotDue")
            return _summary(session_id, error="NotActive")

        cohort = find_cohort_members(session["year"], session["branch"], conn=conn)
        marked = {r["student_id"] for r in list_presence_records(session_id, conn=conn)}

        for student_id in cohort:
            if student_id in marked:
                continue
            insert_presence_record_if_absent(
                student_id,
                session_id,
                "ABSENT",
                created_at=stamp,
                conn=conn,
            )

        present_ids = {
            r["student_id"]
            for r in list_presence_records(session_id, conn=conn)
            if r["status"] == "PRESENT"
        }
        total = len(cohort)
        present = sum(1 for student_id in cohort if student_id in present_ids)
        absent = total - present

        record_session_summary(
            session_id,
            total_count=total,
            present_count=present,
            absent_count=absent,
            finalized_at=stamp,
            conn=conn,
        )

    logger.info(
        "Finalized session %s: %d present, %d absent of %d",
        session_id,
        present,
        absent,
        total,
    )
    return _summary(session_id, total=total, present=present, absent=absent)
