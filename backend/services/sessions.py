import itertools
import logging
import threading
from datetime import datetime, timedelta

import backend.config as config
from backend.outcomes import (
    CancelResult,
    Failure,
    FinalizeSummary,
    StartSessionResult,
    failure,
)
from backend.security import issue_scan_token
from backend.services.finalizer import finalize
from backend.services.schedule import resolve_current_slot
from database.db import (
    close_session_window,
    count_cohort_members,
    count_presence,
    find_cohort_members,
    from_iso,
    get_session,
    get_session_by_id,
    insert_presence_record_if_absent,
    list_active_sessions,
    list_scheduled_sessions,
    set_session_status,
    set_session_token,
    to_iso,
    upsert_session,
    write_transaction,
)

logger = logging.getLogger(__name__)

FINAL_STATUSES = frozenset({"COMPLETED", "CANCELLED"})

# -----------------------------
# Finalization timers (in-memory)
# -----------------------------
TIMERS_LOCK = threading.Lock()
_GENERATIONS = itertools.count(1)

# session_id -> (generation, timer); a timer only acts if its generation is
# still the registered one when it fires.
PENDING_FINALIZATIONS: dict[int, tuple[int, threading.Timer]] = {}


def schedule_finalization(session_id: int, delay_seconds: float) -> None:
    """Arm the finalize callback for a session, replacing any pending one."""
    with TIMERS_LOCK:
        generation = next(_GENERATIONS)
        timer = threading.Timer(
            max(0.0, delay_seconds),
            _run_due_finalization,
            args=(session_id, generation),
        )
        timer.daemon = True
        previous = PENDING_FINALIZATIONS.get(session_id)
        PENDING_FINALIZATIONS[session_id] = (generation, timer)
        if previous is not None:
            previous[1].cancel()
        timer.start()


def cancel_finalization(session_id: int) -> bool:
    with TIMERS_LOCK:
        entry = PENDING_FINALIZATIONS.pop(session_id, None)
    if entry is None:
        return False
    entry[1].cancel()
    return True


def has_pending_finalization(session_id: int) -> bool:
    with TIMERS_LOCK:
        return session_id in PENDING_FINALIZATIONS


def shutdown_scheduler() -> None:
    with TIMERS_LOCK:
        entries = list(PENDING_FINALIZATIONS.values())
        PENDING_FINALIZATIONS.clear()
    for _, timer in entries:
        timer.cancel()


def _run_due_finalization(session_id: int, generation: int) -> None:
    with TIMERS_LOCK:
        entry = PENDING_FINALIZATIONS.get(session_id)
        if entry is None or entry[0] != generation:
            return
        del PENDING_FINALIZATIONS[session_id]

    try:
        _rearm_or_finalize(session_id)
    except Exception:
        logger.exception("Automatic finalization of session %s failed", session_id)


def _rearm_or_finalize(session_id: int) -> None:
    session = get_session_by_id(session_id)
    if session is None or session["status"] != "ACTIVE":
        return
    now = datetime.now()
    active_until = from_iso(session["active_until"])
    remaining = (active_until - now).total_seconds() if active_until else 0.0
    if remaining > 0:
        # Window was extended after this timer was armed.
        schedule_finalization(session_id, remaining)
        return

    result = finalize(session_id, now=now, due_before=now)
    if result["ok"]:
        return
    if result["error"] == "NotDue" and not has_pending_finalization(session_id):
        # Refreshed between the read above and the claim; follow the new window.
        _rearm_or_finalize(session_id)
        return
    logger.debug("Timer for session %s found nothing to finalize: %s", session_id, result["error"])


# -----------------------------
# Session lifecycle
# -----------------------------
def start_session(
    teacher_id: str,
    subject: str,
    year: str,
    branch: str,
    now: datetime | None = None,
) -> StartSessionResult | Failure:
    """
    Open (or refresh) today's attendance window for the teacher's current slot.

    Repeated calls while the session is SCHEDULED or ACTIVE reuse the same row,
    mint a fresh token and push `active_until` forward. A session that already
    reached COMPLETED or CANCELLED today cannot be reopened.
    """
    moment = now or datetime.now()
    timeslot = resolve_current_slot(year, branch, moment)
    if timeslot is None:
        logger.info("No slot for %s/%s at %s; teacher %s", year, branch, moment.strftime("%a %H:%M"), teacher_id)
        return failure("NoActiveSlot")

    session_date = moment.date().isoformat()
    window = float(config.QR_WINDOW_SECONDS)
    active_until = moment + timedelta(seconds=window)

    with write_transaction() as conn:
        existing = get_session(teacher_id, timeslot["id"], session_date, conn=conn)
        if existing is not None and existing["status"] in FINAL_STATUSES:
            logger.info("Session %s is %s; refusing to reopen", existing["id"], existing["status"])
            return failure("SessionAlreadyFinalized")

        session_id = upsert_session(
            teacher_id=teacher_id,
            subject=subject,
            year=year,
            branch=branch,
            timeslot_id=timeslot["id"],
            date=session_date,
            status="ACTIVE",
            active_until=to_iso(active_until),
            started_at=to_iso(moment),
            conn=conn,
        )
        token, _claims = issue_scan_token(session_id, teacher_id, moment)
        set_session_token(session_id, token, conn=conn)

    cohort_size = count_cohort_members(year, branch)
    schedule_finalization(session_id, window)

    logger.info(
        "Session %s active until %s (teacher %s, %s %s/%s)",
        session_id,
        to_iso(active_until),
        teacher_id,
        subject,
        year,
        branch,
    )
    return {
        "ok": True,
        "session_id": session_id,
        "token": token,
        "cohort_size": cohort_size,
        "expires_at": to_iso(active_until),
    }


def stop_session(session_id: int, now: datetime | None = None) -> FinalizeSummary | Failure:
    moment = now or datetime.now()
    if get_session_by_id(session_id) is None:
        return failure("SessionNotFound")

    cancel_finalization(session_id)
    if not close_session_window(session_id, to_iso(moment)):
        return failure("NotActive")

    result = finalize(session_id, now=moment)
    if result["error"] == "AlreadyFinalized":
        # A timer already in flight finalized the window this call closed.
        return {
            **result,
            "ok": True,
            "error": None,
            "message": (
                f"Attendance finalized: {result['present_count']} present, "
                f"{result['absent_count']} absent of {result['total_cohort']}."
            ),
        }
    if not result["ok"]:
        return failure("NotActive")
    return result


def recover_overdue_sessions(now: datetime | None = None) -> dict[str, int]:
    """
    Finalize ACTIVE sessions whose window has passed and re-arm timers for
    the ones still running. Covers finalizations lost to a process restart.
    """
    moment = now or datetime.now()
    finalized = 0
    rearmed = 0

    for session in list_active_sessions():
        session_id = session["id"]
        active_until = from_iso(session["active_until"])
        if active_until is None or active_until <= moment:
            # The row may have been refreshed since it was listed.
            if finalize(session_id, now=moment, due_before=moment)["ok"]:
                cancel_finalization(session_id)
                finalized += 1
            continue

        if has_pending_finalization(session_id):
            continue
        schedule_finalization(session_id, (active_until - moment).total_seconds())
        rearmed += 1

    if finalized or rearmed:
        logger.info("Recovery sweep: %d finalized, %d timers re-armed", finalized, rearmed)
    return {"finalized": finalized, "rearmed": rearmed}


def cancel_scheduled_sessions(
    year: str,
    branch: str,
    date: str,
    now: datetime | None = None,
) -> CancelResult | Failure:
    stamp = to_iso(now or datetime.now())

    with write_transaction() as conn:
        sessions = list_scheduled_sessions(year, branch, date, conn=conn)
        if not sessions:
            return failure("NoScheduledSessions")

        cohort = find_cohort_members(year, branch, conn=conn)
        cancelled = 0
        for session in sessions:
            if not set_session_status(session["id"], "CANCELLED", expected="SCHEDULED", conn=conn):
                continue
            cancelled += 1
            for student_id in cohort:
                insert_presence_record_if_absent(
                    student_id,
                    session["id"],
                    "CANCELLED",
                    created_at=stamp,
                    conn=conn,
                )

    logger.info("Cancelled %d scheduled sessions for %s/%s on %s", cancelled, year, branch, date)
    return {
        "ok": True,
        "cancelled_sessions": cancelled,
        "message": f"{cancelled} classes marked as cancelled",
    }


def attendance_count(session_id: int) -> dict | Failure:
    session = get_session_by_id(session_id)
    if session is None:
        return failure("SessionNotFound")
    return {
        "ok": True,
        "session_id": session_id,
        "status": session["status"],
        "present": count_presence(session_id, "PRESENT"),
        "total": count_cohort_members(session["year"], session["branch"]),
    }
