from typing import Literal, TypedDict

ErrorCode = Literal[
    "NoActiveSlot",
    "SessionAlreadyFinalized",
    "NotActive",
    "SessionNotFound",
    "AlreadyFinalized",
    "MalformedToken",
    "TokenExpired",
    "TokenSessionMismatch",
    "SessionNotActive",
    "InvalidStudent",
    "NotEnrolled",
    "AlreadyMarked",
    "NoScheduledSessions",
    "NotDue",
]

ErrorKind = Literal["NotFound", "InvalidState", "Conflict", "Unauthorized", "Malformed"]

ERROR_KINDS: dict[ErrorCode, ErrorKind] = {
    "NoActiveSlot": "NotFound",
    "SessionNotFound": "NotFound",
    "InvalidStudent": "NotFound",
    "NoScheduledSessions": "NotFound",
    "NotActive": "InvalidState",
    "SessionNotActive": "InvalidState",
    "AlreadyFinalized": "InvalidState",
    "NotDue": "InvalidState",
    "TokenExpired": "InvalidState",
    "AlreadyMarked": "Conflict",
    "SessionAlreadyFinalized": "Conflict",
    "TokenSessionMismatch": "Unauthorized",
    "NotEnrolled": "Unauthorized",
    "MalformedToken": "Malformed",
}

ERROR_MESSAGES: dict[ErrorCode, str] = {
    "NoActiveSlot": "No class scheduled right now.",
    "SessionAlreadyFinalized": "Attendance for this class has already been closed today.",
    "NotActive": "Class is not active.",
    "SessionNotFound": "Class not found.",
    "AlreadyFinalized": "Attendance for this class has already been finalized.",
    "MalformedToken": "Invalid QR code format.",
    "TokenExpired": "QR code has expired.",
    "TokenSessionMismatch": "This QR code does not belong to this class.",
    "SessionNotActive": "Attendance window for this class is closed.",
    "InvalidStudent": "Invalid student.",
    "NotEnrolled": "You are not enrolled in this class.",
    "AlreadyMarked": "Attendance already marked for this class.",
    "NoScheduledSessions": "No scheduled classes found for this date.",
    "NotDue": "Attendance window for this class is still open.",
}

# Rejections students hit in normal use; they are not failures of the system.
STEADY_STATE_CODES: frozenset[ErrorCode] = frozenset({"AlreadyMarked", "TokenExpired"})


class Failure(TypedDict):
    ok: Literal[False]
    error: ErrorCode
    message: str


def failure(code: ErrorCode) -> Failure:
    return {"ok": False, "error": code, "message": ERROR_MESSAGES[code]}


class StartSessionResult(TypedDict):
    ok: Literal[True]
    session_id: int
    token: str
    cohort_size: int
    expires_at: str


class FinalizeSummary(TypedDict):
    ok: bool
    error: ErrorCode | None
    message: str
    session_id: int
    total_cohort: int
    present_count: int
    absent_count: int


class ClassDetails(TypedDict):
    subject: str
    teacher: str
    time: str


class ScanResult(TypedDict):
    accepted: bool
    reason: ErrorCode | None
    message: str
    session_id: int | None
    class_details: ClassDetails | None


class CancelResult(TypedDict):
    ok: Literal[True]
    cancelled_sessions: int
    message: str


def rejected_scan(code: ErrorCode, session_id: int | None = None) -> ScanResult:
    return {
        "accepted": False,
        "reason": code,
        "message": ERROR_MESSAGES[code],
        "session_id": session_id,
        "class_details": None,
    }
