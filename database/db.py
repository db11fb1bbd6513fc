import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Literal, TypedDict, cast

from backend.config import DB_PATH


Role = Literal["ADMIN", "TEACHER", "STUDENT"]
SessionStatus = Literal["SCHEDULED", "ACTIVE", "COMPLETED", "CANCELLED"]
PresenceStatus = Literal["PRESENT", "ABSENT", "CANCELLED"]

ISO_TIMESPEC = "milliseconds"


class UserRow(TypedDict):
    id: str
    name: str
    email: str | None
    role: Role
    year: str | None
    branch: str | None


class TimeslotRow(TypedDict):
    id: int
    year: str
    branch: str
    day_of_week: int
    start_time: str
    end_time: str


class SessionRow(TypedDict):
    id: int
    teacher_id: str
    subject: str
    year: str
    branch: str
    timeslot_id: int
    date: str
    status: SessionStatus
    active_until: str | None
    token: str | None
    started_at: str | None
    finalized_at: str | None
    total_count: int | None
    present_count: int | None
    absent_count: int | None


class PresenceRow(TypedDict):
    id: int
    student_id: str
    session_id: int
    status: PresenceStatus
    created_at: str


def to_iso(value: datetime) -> str:
    return value.isoformat(timespec=ISO_TIMESPEC)


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def write_transaction(conn: sqlite3.Connection | None = None) -> Iterator[sqlite3.Connection]:
    """
    Run a block inside `BEGIN IMMEDIATE` so concurrent writers serialize on
    the database lock instead of interleaving check-then-insert sequences.
    """
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        active_conn.execute("BEGIN IMMEDIATE")
        yield active_conn
        active_conn.commit()
    except BaseException:
        active_conn.rollback()
        raise
    finally:
        if owns_conn:
            active_conn.close()


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        role TEXT NOT NULL CHECK (role IN ('ADMIN', 'TEACHER', 'STUDENT')),
        year TEXT,
        branch TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS timeslots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        year TEXT NOT NULL,
        branch TEXT NOT NULL,
        day_of_week INTEGER NOT NULL CHECK (day_of_week BETWEEN 0 AND 6),  -- 0 = Sunday
        start_time TEXT NOT NULL,        -- HH:MM
        end_time TEXT NOT NULL,          -- HH:MM
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS class_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        teacher_id TEXT NOT NULL,
        subject TEXT NOT NULL,
        year TEXT NOT NULL,
        branch TEXT NOT NULL,
        timeslot_id INTEGER NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        status TEXT NOT NULL DEFAULT 'SCHEDULED'
            CHECK (status IN ('SCHEDULED', 'ACTIVE', 'COMPLETED', 'CANCELLED')),
        active_until TEXT,
        token TEXT,
        started_at TEXT,
        finalized_at TEXT,
        total_count INTEGER,
        present_count INTEGER,
        absent_count INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (teacher_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (timeslot_id) REFERENCES timeslots(id) ON DELETE CASCADE,
        UNIQUE(teacher_id, timeslot_id, date)
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL,
        session_id INTEGER NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('PRESENT', 'ABSENT', 'CANCELLED')),
        created_at TEXT NOT NULL,
        FOREIGN KEY (student_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (session_id) REFERENCES class_sessions(id) ON DELETE CASCADE,
        UNIQUE(student_id, session_id)
    )
    """)

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_users_cohort ON users(role, year, branch)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_timeslots_lookup ON timeslots(year, branch, day_of_week)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_class_sessions_due ON class_sessions(status, active_until)"
    )

    conn.commit()
    conn.close()


# -----------------------------
# Users / cohorts
# -----------------------------
def _user_from_row(row: sqlite3.Row) -> UserRow:
    return {
        "id": str(row["id"]),
        "name": str(row["name"]),
        "email": row["email"],
        "role": cast(Role, row["role"]),
        "year": row["year"],
        "branch": row["branch"],
    }


def add_user(
    user_id: str,
    name: str,
    role: Role,
    *,
    email: str | None = None,
    year: str | None = None,
    branch: str | None = None,
) -> str:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO users (id, name, email, role, year, branch)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (user_id, name, email, role, year, branch))
    conn.commit()
    conn.close()
    return user_id


def get_user(user_id: str, conn: sqlite3.Connection | None = None) -> UserRow | None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        row = active_conn.execute("""
            SELECT id, name, email, role, year, branch
            FROM users
            WHERE id = ?
        """, (user_id,)).fetchone()
        return _user_from_row(row) if row else None
    finally:
        if owns_conn:
            active_conn.close()


def find_cohort_members(
    year: str,
    branch: str,
    conn: sqlite3.Connection | None = None,
) -> list[str]:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        rows = active_conn.execute("""
            SELECT id
            FROM users
            WHERE role = 'STUDENT' AND year = ? AND branch = ?
            ORDER BY id
        """, (year, branch)).fetchall()
        return [str(r["id"]) for r in rows]
    finally:
        if owns_conn:
            active_conn.close()


def count_cohort_members(year: str, branch: str) -> int:
    conn = connect_db()
    row = conn.execute("""
        SELECT COUNT(*)
        FROM users
        WHERE role = 'STUDENT' AND year = ? AND branch = ?
    """, (year, branch)).fetchone()
    conn.close()
    return int(row[0])


# -----------------------------
# Timeslots
# -----------------------------
def _timeslot_from_row(row: sqlite3.Row) -> TimeslotRow:
    return {
        "id": int(row["id"]),
        "year": str(row["year"]),
        "branch": str(row["branch"]),
        "day_of_week": int(row["day_of_week"]),
        "start_time": str(row["start_time"]),
        "end_time": str(row["end_time"]),
    }


def add_timeslot(year: str, branch: str, day_of_week: int, start_time: str, end_time: str) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO timeslots (year, branch, day_of_week, start_time, end_time)
        VALUES (?, ?, ?, ?, ?)
    """, (year, branch, day_of_week, start_time, end_time))
    timeslot_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    return timeslot_id


def get_timeslot_by_id(timeslot_id: int) -> TimeslotRow | None:
    conn = connect_db()
    row = conn.execute("""
        SELECT id, year, branch, day_of_week, start_time, end_time
        FROM timeslots
        WHERE id = ?
    """, (timeslot_id,)).fetchone()
    conn.close()
    return _timeslot_from_row(row) if row else None


def find_timeslot(year: str, branch: str, day_of_week: int, hhmm: str) -> TimeslotRow | None:
    conn = connect_db()
    row = conn.execute("""
        SELECT id, year, branch, day_of_week, start_time, end_time
        FROM timeslots
        WHERE year = ?
          AND branch = ?
          AND day_of_week = ?
          AND start_time <= ?
          AND end_time >= ?
        ORDER BY start_time ASC, id ASC
        LIMIT 1
    """, (year, branch, day_of_week, hhmm, hhmm)).fetchone()
    conn.close()
    return _timeslot_from_row(row) if row else None


# -----------------------------
# Class sessions
# -----------------------------
_SESSION_COLUMNS = """
    id, teacher_id, subject, year, branch, timeslot_id, date, status,
    active_until, token, started_at, finalized_at,
    total_count, present_count, absent_count
"""


def _session_from_row(row: sqlite3.Row) -> SessionRow:
    return {
        "id": int(row["id"]),
        "teacher_id": str(row["teacher_id"]),
        "subject": str(row["subject"]),
        "year": str(row["year"]),
        "branch": str(row["branch"]),
        "timeslot_id": int(row["timeslot_id"]),
        "date": str(row["date"]),
        "status": cast(SessionStatus, row["status"]),
        "active_until": row["active_until"],
        "token": row["token"],
        "started_at": row["started_at"],
        "finalized_at": row["finalized_at"],
        "total_count": row["total_count"],
        "present_count": row["present_count"],
        "absent_count": row["absent_count"],
    }


def get_session(
    teacher_id: str,
    timeslot_id: int,
    date: str,
    conn: sqlite3.Connection | None = None,
) -> SessionRow | None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        row = active_conn.execute(f"""
            SELECT {_SESSION_COLUMNS}
            FROM class_sessions
            WHERE teacher_id = ? AND timeslot_id = ? AND date = ?
        """, (teacher_id, timeslot_id, date)).fetchone()
        return _session_from_row(row) if row else None
    finally:
        if owns_conn:
            active_conn.close()


def get_session_by_id(
    session_id: int,
    conn: sqlite3.Connection | None = None,
) -> SessionRow | None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        row = active_conn.execute(f"""
            SELECT {_SESSION_COLUMNS}
            FROM class_sessions
            WHERE id = ?
        """, (session_id,)).fetchone()
        return _session_from_row(row) if row else None
    finally:
        if owns_conn:
            active_conn.close()


def plan_session(
    teacher_id: str,
    subject: str,
    year: str,
    branch: str,
    timeslot_id: int,
    date: str,
) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO class_sessions (teacher_id, subject, year, branch, timeslot_id, date, status)
        VALUES (?, ?, ?, ?, ?, ?, 'SCHEDULED')
    """, (teacher_id, subject, year, branch, timeslot_id, date))
    session_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    return session_id


def upsert_session(
    *,
    teacher_id: str,
    subject: str,
    year: str,
    branch: str,
    timeslot_id: int,
    date: str,
    status: SessionStatus,
    active_until: str | None,
    started_at: str | None,
    conn: sqlite3.Connection | None = None,
) -> int:
    """
    Insert the (teacher_id, timeslot_id, date) session or refresh it in place.
    Returns `class_sessions.id`; the unique key guarantees a single row.
    """
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        active_conn.execute("""
            INSERT INTO class_sessions (
                teacher_id, subject, year, branch, timeslot_id, date,
                status, active_until, started_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(teacher_id, timeslot_id, date) DO UPDATE SET
                subject = excluded.subject,
                status = excluded.status,
                active_until = excluded.active_until,
                started_at = COALESCE(class_sessions.started_at, excluded.started_at),
                updated_at = CURRENT_TIMESTAMP
        """, (teacher_id, subject, year, branch, timeslot_id, date, status, active_until, started_at))
        row = active_conn.execute("""
            SELECT id
            FROM class_sessions
            WHERE teacher_id = ? AND timeslot_id = ? AND date = ?
        """, (teacher_id, timeslot_id, date)).fetchone()
        if owns_conn:
            active_conn.commit()
        return int(row["id"])
    finally:
        if owns_conn:
            active_conn.close()


def set_session_token(session_id: int, token: str | None, conn: sqlite3.Connection | None = None) -> None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        active_conn.execute("""
            UPDATE class_sessions
            SET token = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """, (token, session_id))
        if owns_conn:
            active_conn.commit()
    finally:
        if owns_conn:
            active_conn.close()


def set_session_status(
    session_id: int,
    status: SessionStatus,
    *,
    expected: SessionStatus,
    conn: sqlite3.Connection | None = None,
) -> bool:
    """
    Move a session from `expected` to `status`. The update only applies when
    the row is currently in `expected`; the return value tells the caller
    whether it won the transition.
    """
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.execute("""
            UPDATE class_sessions
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ?
        """, (status, session_id, expected))
        if owns_conn:
            active_conn.commit()
        return cur.rowcount == 1
    finally:
        if owns_conn:
            active_conn.close()


def complete_due_session(
    session_id: int,
    due_before: str,
    conn: sqlite3.Connection | None = None,
) -> bool:
    """Claim ACTIVE -> COMPLETED only if the window closed at or before `due_before`."""
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.execute("""
            UPDATE class_sessions
            SET status = 'COMPLETED', updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
              AND status = 'ACTIVE'
              AND (active_until IS NULL OR active_until <= ?)
        """, (session_id, due_before))
        if owns_conn:
            active_conn.commit()
        return cur.rowcount == 1
    finally:
        if owns_conn:
            active_conn.close()


def close_session_window(
    session_id: int,
    active_until: str,
    conn: sqlite3.Connection | None = None,
) -> bool:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.execute("""
            UPDATE class_sessions
            SET active_until = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = 'ACTIVE'
        """, (active_until, session_id))
        if owns_conn:
            active_conn.commit()
        return cur.rowcount == 1
    finally:
        if owns_conn:
            active_conn.close()


def record_session_summary(
    session_id: int,
    *,
    total_count: int,
    present_count: int,
    absent_count: int,
    finalized_at: str,
    conn: sqlite3.Connection | None = None,
) -> None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        active_conn.execute("""
            UPDATE class_sessions
            SET total_count = ?,
                present_count = ?,
                absent_count = ?,
                finalized_at = ?,
                token = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """, (total_count, present_count, absent_count, finalized_at, session_id))
        if owns_conn:
            active_conn.commit()
    finally:
        if owns_conn:
            active_conn.close()


def list_active_sessions(conn: sqlite3.Connection | None = None) -> list[SessionRow]:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        rows = active_conn.execute(f"""
            SELECT {_SESSION_COLUMNS}
            FROM class_sessions
            WHERE status = 'ACTIVE'
            ORDER BY active_until ASC, id ASC
        """).fetchall()
        return [_session_from_row(r) for r in rows]
    finally:
        if owns_conn:
            active_conn.close()


def list_scheduled_sessions(
    year: str,
    branch: str,
    date: str,
    conn: sqlite3.Connection | None = None,
) -> list[SessionRow]:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        rows = active_conn.execute(f"""
            SELECT {_SESSION_COLUMNS}
            FROM class_sessions
            WHERE year = ? AND branch = ? AND date = ? AND status = 'SCHEDULED'
            ORDER BY id ASC
        """, (year, branch, date)).fetchall()
        return [_session_from_row(r) for r in rows]
    finally:
        if owns_conn:
            active_conn.close()


# -----------------------------
# Presence records
# -----------------------------
def _presence_from_row(row: sqlite3.Row) -> PresenceRow:
    return {
        "id": int(row["id"]),
        "student_id": str(row["student_id"]),
        "session_id": int(row["session_id"]),
        "status": cast(PresenceStatus, row["status"]),
        "created_at": str(row["created_at"]),
    }


def find_presence_record(
    student_id: str,
    session_id: int,
    conn: sqlite3.Connection | None = None,
) -> PresenceRow | None:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        row = active_conn.execute("""
            SELECT id, student_id, session_id, status, created_at
            FROM attendance
            WHERE student_id = ? AND session_id = ?
        """, (student_id, session_id)).fetchone()
        return _presence_from_row(row) if row else None
    finally:
        if owns_conn:
            active_conn.close()


def list_presence_records(
    session_id: int,
    conn: sqlite3.Connection | None = None,
) -> list[PresenceRow]:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        rows = active_conn.execute("""
            SELECT id, student_id, session_id, status, created_at
            FROM attendance
            WHERE session_id = ?
            ORDER BY id ASC
        """, (session_id,)).fetchall()
        return [_presence_from_row(r) for r in rows]
    finally:
        if owns_conn:
            active_conn.close()


def insert_presence_record_if_absent(
    student_id: str,
    session_id: int,
    status: PresenceStatus,
    *,
    created_at: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> bool:
    """
    Insert a presence row unless one already exists for the pair.

    The UNIQUE(student_id, session_id) constraint decides races: exactly one
    writer sees `True`, everyone else gets `False` and the first row is kept.
    """
    owns_conn = conn is None
    active_conn = conn or connect_db()
    stamp = created_at or to_iso(datetime.now())
    try:
        cur = active_conn.execute("""
            INSERT OR IGNORE INTO attendance (student_id, session_id, status, created_at)
            VALUES (?, ?, ?, ?)
        """, (student_id, session_id, status, stamp))
        if owns_conn:
            active_conn.commit()
        return cur.rowcount == 1
    finally:
        if owns_conn:
            active_conn.close()


def count_presence(
    session_id: int,
    status: PresenceStatus = "PRESENT",
    conn: sqlite3.Connection | None = None,
) -> int:
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        row = active_conn.execute("""
            SELECT COUNT(*)
            FROM attendance
            WHERE session_id = ? AND status = ?
        """, (session_id, status)).fetchone()
        return int(row[0])
    finally:
        if owns_conn:
            active_conn.close()
