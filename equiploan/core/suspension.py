"""
Suspension (blacklist) manager.

A new suspension overwrites the student's current window and reason; windows
are never stacked or merged. Blacklist entries are an append-only history and
are not consulted to decide whether a student is suspended right now. Nothing
expires suspensions in the background: expiry is checked at read time.
"""

import sqlite3
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from . import config, dao
from .db import transaction
from .errors import NotFoundError, ValidationError
from .schema import BlacklistEntry, Student
from ..util.logging import logger


def suspend(student_id: str, days: int, reason: str, actor_id: Optional[str] = None,
            clock: Callable[[], datetime] = config.now,
            conn: sqlite3.Connection = None) -> BlacklistEntry:
    """Suspend a student for `days` days starting now.

    When `conn` is given the writes join the caller's transaction.
    """
    if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
        raise ValidationError(f"Suspension length must be a positive number of days, got {days!r}")
    if not reason or not reason.strip():
        raise ValidationError("Suspension reason cannot be empty")

    if conn is None:
        with transaction() as own:
            return suspend(student_id, days, reason, actor_id, clock, own)

    if dao.get_student(student_id, conn=conn) is None:
        raise NotFoundError("Student", student_id)

    start = config.as_local(clock())
    end_date = start + timedelta(days=days)

    dao.update_student_suspension(student_id, end_date, reason, start, conn=conn)
    entry = dao.add_blacklist_entry(
        student_id=student_id,
        start_date=start,
        end_date=end_date,
        reason=reason,
        blacklisted_by_user_id=actor_id,
        conn=conn,
    )
    dao.add_activity(
        action="student.suspended",
        entity_type="student",
        entity_id=student_id,
        user_id=actor_id,
        details={"days": days, "end_date": end_date.isoformat(), "reason": reason},
        created_at=start,
        conn=conn,
    )

    logger.log_suspension(student_id, days, end_date, reason, actor_id)
    return entry


def is_suspended(student: Student, now: datetime) -> bool:
    """Read-time check of the student's own suspension window."""
    if not student.is_blacklisted or student.blacklist_end_date is None:
        return False
    return student.blacklist_end_date > now


def list_suspensions(student_id: str) -> List[BlacklistEntry]:
    """Suspension history, newest first."""
    if dao.get_student(student_id) is None:
        raise NotFoundError("Student", student_id)
    return dao.list_blacklist_entries(student_id)
