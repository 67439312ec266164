"""
Persistence collaborator for the loan engine.

Every function accepts an optional open connection. When one is given the
caller owns the transaction; otherwise the function commits its own write.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import config
from .db import transaction
from .schema import (
    ActivityEntry,
    BlacklistEntry,
    EquipmentItem,
    Loan,
    Student,
    TrustEvent,
)


@contextmanager
def _use(conn: Optional[sqlite3.Connection]):
    if conn is not None:
        yield conn
        return
    with transaction() as own:
        yield own


def _new_id() -> str:
    return str(uuid.uuid4())


def _ts(value: Optional[datetime]) -> Optional[str]:
    return config.as_local(value).isoformat() if value is not None else None


def _parse_datetime(value) -> Optional[datetime]:
    """Parse stored timestamps to naive local time; unparseable values read back as None."""
    if value is None or isinstance(value, datetime):
        return config.as_local(value)
    try:
        return config.as_local(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def _row_to_student(row: sqlite3.Row) -> Optional[Student]:
    if not row:
        return None
    return Student(
        id=row["id"],
        student_id=row["student_id"],
        full_name=row["full_name"],
        year_group=row["year_group"],
        class_name=row["class_name"],
        house=row["house"],
        email=row["email"],
        trust_score=row["trust_score"],
        trust_score_raw=row["trust_score_raw"],
        is_blacklisted=bool(row["is_blacklisted"]),
        blacklist_end_date=_parse_datetime(row["blacklist_end_date"]),
        blacklist_reason=row["blacklist_reason"],
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def _row_to_equipment(row: sqlite3.Row) -> Optional[EquipmentItem]:
    if not row:
        return None
    return EquipmentItem(
        id=row["id"],
        item_id=row["item_id"],
        name=row["name"],
        category=row["category"],
        location=row["location"],
        status=row["status"],
        condition_notes=row["condition_notes"],
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def _row_to_loan(row: sqlite3.Row) -> Optional[Loan]:
    if not row:
        return None
    return Loan(
        id=row["id"],
        student_id=row["student_id"],
        equipment_id=row["equipment_id"],
        borrowed_by_user_id=row["borrowed_by_user_id"],
        borrowed_at=_parse_datetime(row["borrowed_at"]),
        due_at=_parse_datetime(row["due_at"]),
        returned_at=_parse_datetime(row["returned_at"]),
        is_overdue=bool(row["is_overdue"]),
        status=row["status"],
        outcome=row["outcome"],
        created_at=_parse_datetime(row["created_at"]),
    )


def _row_to_blacklist_entry(row: sqlite3.Row) -> BlacklistEntry:
    return BlacklistEntry(
        id=row["id"],
        student_id=row["student_id"],
        blacklisted_by_user_id=row["blacklisted_by_user_id"],
        start_date=_parse_datetime(row["start_date"]),
        end_date=_parse_datetime(row["end_date"]),
        reason=row["reason"],
        is_active=bool(row["is_active"]),
        created_at=_parse_datetime(row["created_at"]),
    )


def _row_to_trust_event(row: sqlite3.Row) -> TrustEvent:
    return TrustEvent(
        id=row["id"],
        student_id=row["student_id"],
        loan_id=row["loan_id"],
        verdict=row["verdict"],
        score_before=row["score_before"],
        score_after=row["score_after"],
        created_at=_parse_datetime(row["created_at"]),
    )


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------

def create_student(student_id: str, full_name: str, year_group: str = None, class_name: str = None,
                   house: str = None, email: str = None, trust_score: float = None,
                   created_at: datetime = None, conn: sqlite3.Connection = None) -> Student:
    """Enroll a student. The stored score starts at the base score unless given."""
    if trust_score is None:
        trust_score = config.BASE_TRUST_SCORE
    created_at = created_at or config.now()

    student = Student(
        id=_new_id(),
        student_id=student_id,
        full_name=full_name,
        year_group=year_group,
        class_name=class_name,
        house=house,
        email=email,
        trust_score=trust_score,
        trust_score_raw=trust_score,
        created_at=created_at,
        updated_at=created_at,
    )

    with _use(conn) as c:
        c.execute("""
            INSERT INTO students (
                id, student_id, full_name, year_group, class_name, house, email,
                trust_score, trust_score_raw, is_blacklisted, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, FALSE, ?, ?)
        """, (
            student.id, student.student_id, student.full_name, student.year_group,
            student.class_name, student.house, student.email, student.trust_score,
            student.trust_score_raw, _ts(created_at), _ts(created_at)
        ))
    return student


def get_student(student_id: str, conn: sqlite3.Connection = None) -> Optional[Student]:
    """Get a student by record id."""
    if not student_id:
        return None
    with _use(conn) as c:
        row = c.execute("SELECT * FROM students WHERE id = ?", (student_id,)).fetchone()
        return _row_to_student(row)


def list_students(conn: sqlite3.Connection = None) -> List[Student]:
    with _use(conn) as c:
        rows = c.execute("SELECT * FROM students ORDER BY full_name").fetchall()
        return [_row_to_student(row) for row in rows]


def update_student_trust(student_id: str, trust_score: float, trust_score_raw: float,
                         updated_at: datetime, conn: sqlite3.Connection = None) -> bool:
    """Store the displayed score together with its unrounded running value."""
    with _use(conn) as c:
        cursor = c.execute("""
            UPDATE students
            SET trust_score = ?, trust_score_raw = ?, updated_at = ?
            WHERE id = ?
        """, (trust_score, trust_score_raw, _ts(updated_at), student_id))
        return cursor.rowcount > 0


def update_student_suspension(student_id: str, end_date: datetime, reason: str,
                              updated_at: datetime, conn: sqlite3.Connection = None) -> bool:
    """Overwrite the student's current suspension window (last write wins)."""
    with _use(conn) as c:
        cursor = c.execute("""
            UPDATE students
            SET is_blacklisted = TRUE, blacklist_end_date = ?, blacklist_reason = ?, updated_at = ?
            WHERE id = ?
        """, (_ts(end_date), reason, _ts(updated_at), student_id))
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Equipment
# ---------------------------------------------------------------------------

def create_equipment(item_id: str, name: str, category: str = None, location: str = None,
                     status: str = 'available', created_at: datetime = None,
                     conn: sqlite3.Connection = None) -> EquipmentItem:
    created_at = created_at or config.now()
    item = EquipmentItem(
        id=_new_id(),
        item_id=item_id,
        name=name,
        category=category,
        location=location,
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )
    with _use(conn) as c:
        c.execute("""
            INSERT INTO equipment (id, item_id, name, category, location, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (item.id, item.item_id, item.name, item.category, item.location, item.status,
              _ts(created_at), _ts(created_at)))
    return item


def get_equipment(equipment_id: str, conn: sqlite3.Connection = None) -> Optional[EquipmentItem]:
    if not equipment_id:
        return None
    with _use(conn) as c:
        row = c.execute("SELECT * FROM equipment WHERE id = ?", (equipment_id,)).fetchone()
        return _row_to_equipment(row)


def update_equipment_status(equipment_id: str, status: str, updated_at: datetime,
                            condition_notes: str = None, conn: sqlite3.Connection = None) -> bool:
    """Set equipment status; condition notes are only replaced when provided."""
    with _use(conn) as c:
        if condition_notes is None:
            cursor = c.execute(
                "UPDATE equipment SET status = ?, updated_at = ? WHERE id = ?",
                (status, _ts(updated_at), equipment_id)
            )
        else:
            cursor = c.execute(
                "UPDATE equipment SET status = ?, condition_notes = ?, updated_at = ? WHERE id = ?",
                (status, condition_notes, _ts(updated_at), equipment_id)
            )
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Loans
# ---------------------------------------------------------------------------

def create_loan(student_id: str, equipment_id: str, borrowed_at: datetime, due_at: Optional[datetime],
                borrowed_by_user_id: str = None, conn: sqlite3.Connection = None) -> Loan:
    borrowed_at, due_at = config.as_local(borrowed_at), config.as_local(due_at)
    loan = Loan(
        id=_new_id(),
        student_id=student_id,
        equipment_id=equipment_id,
        borrowed_by_user_id=borrowed_by_user_id,
        borrowed_at=borrowed_at,
        due_at=due_at,
        created_at=borrowed_at,
    )
    with _use(conn) as c:
        c.execute("""
            INSERT INTO loans (
                id, student_id, equipment_id, borrowed_by_user_id, borrowed_at, due_at,
                returned_at, is_overdue, status, outcome, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, NULL, FALSE, 'active', NULL, ?)
        """, (loan.id, student_id, equipment_id, borrowed_by_user_id, _ts(borrowed_at),
              _ts(due_at), _ts(borrowed_at)))
    return loan


def get_loan(loan_id: str, conn: sqlite3.Connection = None) -> Optional[Loan]:
    if not loan_id:
        return None
    with _use(conn) as c:
        row = c.execute("SELECT * FROM loans WHERE id = ?", (loan_id,)).fetchone()
        return _row_to_loan(row)


def close_loan(loan_id: str, returned_at: datetime, outcome: str, conn: sqlite3.Connection = None) -> bool:
    """Close an open loan. Returns False when the loan was already closed."""
    with _use(conn) as c:
        cursor = c.execute("""
            UPDATE loans
            SET returned_at = ?, status = 'returned', is_overdue = FALSE, outcome = ?
            WHERE id = ? AND returned_at IS NULL
        """, (_ts(returned_at), outcome, loan_id))
        return cursor.rowcount > 0


def update_loan_state(loan_id: str, status: str, is_overdue: bool, conn: sqlite3.Connection = None) -> bool:
    """Persist resolved status fields. Closed loans are never touched."""
    with _use(conn) as c:
        cursor = c.execute("""
            UPDATE loans SET status = ?, is_overdue = ?
            WHERE id = ? AND returned_at IS NULL
        """, (status, bool(is_overdue), loan_id))
        return cursor.rowcount > 0


def list_returned_loans(student_id: str, conn: sqlite3.Connection = None) -> List[Loan]:
    """All closed loans of a student, oldest return first."""
    with _use(conn) as c:
        rows = c.execute("""
            SELECT * FROM loans
            WHERE student_id = ? AND returned_at IS NOT NULL
            ORDER BY returned_at ASC
        """, (student_id,)).fetchall()
        return [_row_to_loan(row) for row in rows]


def list_open_loans(conn: sqlite3.Connection = None) -> List[Loan]:
    with _use(conn) as c:
        rows = c.execute("""
            SELECT * FROM loans
            WHERE returned_at IS NULL
            ORDER BY borrowed_at DESC
        """).fetchall()
        return [_row_to_loan(row) for row in rows]


def get_open_loan_for_equipment(equipment_id: str, conn: sqlite3.Connection = None) -> Optional[Loan]:
    with _use(conn) as c:
        row = c.execute("""
            SELECT * FROM loans
            WHERE equipment_id = ? AND returned_at IS NULL
            ORDER BY borrowed_at DESC
            LIMIT 1
        """, (equipment_id,)).fetchone()
        return _row_to_loan(row)


# ---------------------------------------------------------------------------
# Blacklist entries (append-only)
# ---------------------------------------------------------------------------

def add_blacklist_entry(student_id: str, start_date: datetime, end_date: datetime, reason: str,
                        blacklisted_by_user_id: str = None,
                        conn: sqlite3.Connection = None) -> BlacklistEntry:
    entry = BlacklistEntry(
        id=_new_id(),
        student_id=student_id,
        blacklisted_by_user_id=blacklisted_by_user_id,
        start_date=start_date,
        end_date=end_date,
        reason=reason,
        is_active=True,
        created_at=start_date,
    )
    with _use(conn) as c:
        c.execute("""
            INSERT INTO blacklist_entries (
                id, student_id, blacklisted_by_user_id, start_date, end_date, reason, is_active, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, TRUE, ?)
        """, (entry.id, student_id, blacklisted_by_user_id, _ts(start_date), _ts(end_date),
              reason, _ts(entry.created_at)))
    return entry


def list_blacklist_entries(student_id: str, conn: sqlite3.Connection = None) -> List[BlacklistEntry]:
    """Suspension history for a student, newest first."""
    with _use(conn) as c:
        rows = c.execute("""
            SELECT * FROM blacklist_entries
            WHERE student_id = ?
            ORDER BY start_date DESC
        """, (student_id,)).fetchall()
        return [_row_to_blacklist_entry(row) for row in rows]


# ---------------------------------------------------------------------------
# Trust events (append-only verdict log)
# ---------------------------------------------------------------------------

def add_trust_event(student_id: str, loan_id: Optional[str], verdict: str, score_before: float,
                    score_after: float, created_at: datetime,
                    conn: sqlite3.Connection = None) -> TrustEvent:
    with _use(conn) as c:
        cursor = c.execute("""
            INSERT INTO trust_events (student_id, loan_id, verdict, score_before, score_after, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (student_id, loan_id, verdict, score_before, score_after, _ts(created_at)))
        return TrustEvent(
            id=cursor.lastrowid,
            student_id=student_id,
            loan_id=loan_id,
            verdict=verdict,
            score_before=score_before,
            score_after=score_after,
            created_at=created_at,
        )


def list_trust_events(student_id: str, conn: sqlite3.Connection = None) -> List[TrustEvent]:
    """Verdict log for a student in append order."""
    with _use(conn) as c:
        rows = c.execute(
            "SELECT * FROM trust_events WHERE student_id = ? ORDER BY id ASC",
            (student_id,)
        ).fetchall()
        return [_row_to_trust_event(row) for row in rows]


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------

def add_activity(action: str, entity_type: str, entity_id: str = None, user_id: str = None,
                 details: Dict[str, Any] = None, created_at: datetime = None,
                 conn: sqlite3.Connection = None) -> int:
    created_at = created_at or config.now()
    with _use(conn) as c:
        cursor = c.execute("""
            INSERT INTO activity_log (user_id, action, entity_type, entity_id, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (user_id, action, entity_type, entity_id, json.dumps(details or {}, default=str),
              _ts(created_at)))
        return cursor.lastrowid


def list_activity(entity_type: str = None, entity_id: str = None, limit: int = 50,
                  conn: sqlite3.Connection = None) -> List[ActivityEntry]:
    """Most recent activity entries, optionally filtered by entity."""
    query = "SELECT * FROM activity_log WHERE 1=1"
    params: List[Any] = []

    if entity_type:
        query += " AND entity_type = ?"
        params.append(entity_type)

    if entity_id:
        query += " AND entity_id = ?"
        params.append(entity_id)

    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)

    with _use(conn) as c:
        rows = c.execute(query, params).fetchall()
        return [
            ActivityEntry(
                id=row["id"],
                user_id=row["user_id"],
                action=row["action"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                details=json.loads(row["details"]) if row["details"] else {},
                created_at=_parse_datetime(row["created_at"]),
            )
            for row in rows
        ]


def get_counts(conn: sqlite3.Connection = None) -> Dict[str, int]:
    """Row counts used by the health endpoint."""
    with _use(conn) as c:
        return {
            "students": c.execute("SELECT COUNT(*) FROM students").fetchone()[0],
            "equipment": c.execute("SELECT COUNT(*) FROM equipment").fetchone()[0],
            "open_loans": c.execute("SELECT COUNT(*) FROM loans WHERE returned_at IS NULL").fetchone()[0],
        }
