"""
Return/outcome processor.

Closes a loan under one of three outcomes and applies the side effects as a
single SQLite transaction:

    normal   loan closed, equipment available, on-time/late trust step
    lost     loan closed, equipment lost, 14-day suspension, trust * 0.5
    damaged  loan closed, equipment damaged, 7-day suspension, trust * 0.5

For lost/damaged the flat penalty replaces the on-time/late verdict.
"""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from . import config, dao, trust
from .db import transaction
from .errors import AlreadyReturnedError, LoanEngineError, NotFoundError, ValidationError
from .schema import OUTCOMES, BlacklistEntry, Loan
from .suspension import suspend
from ..util.logging import logger


class KeyedLocks:
    """One mutex per key, created on demand and dropped when unused."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


_loan_locks = KeyedLocks()


@dataclass
class ReturnResult:
    loan: Loan
    outcome: str
    equipment_status: str
    verdict: Optional[str]
    trust_score: float
    suspension: Optional[BlacklistEntry] = None

    def to_dict(self):
        return {
            "loan": self.loan.to_dict(),
            "outcome": self.outcome,
            "equipment_status": self.equipment_status,
            "verdict": self.verdict,
            "trust_score": self.trust_score,
            "suspension": self.suspension.to_dict() if self.suspension else None,
        }


def process_return(loan_id: str, outcome: str = 'normal', actor_id: Optional[str] = None,
                   clock: Callable[[], datetime] = config.now) -> ReturnResult:
    """Close a loan exactly once.

    Raises:
        ValidationError: unknown outcome
        NotFoundError: loan, its equipment or its student is missing
        AlreadyReturnedError: the loan was already closed (nothing is written)
    """
    if outcome not in OUTCOMES:
        raise ValidationError(f"outcome must be one of: {list(OUTCOMES)}")

    with _loan_locks.hold(loan_id):
        try:
            with transaction() as conn:
                result = _close_loan(conn, loan_id, outcome, actor_id, config.as_local(clock()))
        except LoanEngineError as e:
            logger.log_rejection("loan.return", e.code, {"loan_id": loan_id, "outcome": outcome})
            raise

    logger.log_return(
        loan_id, outcome, result.loan.student_id, result.loan.equipment_id,
        details={"verdict": result.verdict, "trust_score": result.trust_score}
    )
    return result


def _close_loan(conn: sqlite3.Connection, loan_id: str, outcome: str, actor_id: Optional[str],
                now: datetime) -> ReturnResult:
    loan = dao.get_loan(loan_id, conn=conn)
    if loan is None:
        raise NotFoundError("Loan", loan_id)
    if loan.returned_at is not None:
        raise AlreadyReturnedError(loan_id)

    equipment = dao.get_equipment(loan.equipment_id, conn=conn)
    if equipment is None:
        raise NotFoundError("Equipment", loan.equipment_id)

    student = dao.get_student(loan.student_id, conn=conn)
    if student is None:
        raise NotFoundError("Student", loan.student_id)

    # Compare-and-set: a concurrent close that got here first wins
    if not dao.close_loan(loan_id, now, outcome, conn=conn):
        raise AlreadyReturnedError(loan_id)

    if outcome == 'normal':
        equipment_status = 'available'
        dao.update_equipment_status(equipment.id, equipment_status, now, conn=conn)
        verdict = trust.verdict_for(now, loan.due_at)
    else:
        equipment_status = outcome
        note = f"Marked as {outcome} on {now.date().isoformat()}"
        dao.update_equipment_status(equipment.id, equipment_status, now, condition_notes=note, conn=conn)
        verdict = trust.PENALTY

    score_raw = student.trust_score_raw
    if verdict is not None:
        score_raw = trust.apply_verdict(student.trust_score_raw, verdict)
        dao.update_student_trust(student.id, trust.round_score(score_raw), score_raw, now, conn=conn)
        dao.add_trust_event(student.id, loan_id, verdict, student.trust_score_raw, score_raw, now, conn=conn)
        logger.log_trust_update(student.id, verdict, student.trust_score_raw, score_raw, loan_id)

    suspension = None
    if outcome != 'normal':
        reason = f"{outcome.capitalize()} equipment: {equipment.name}"
        suspension = suspend(
            student.id,
            config.suspension_days_for(outcome),
            reason,
            actor_id=actor_id,
            clock=lambda: now,
            conn=conn,
        )

    dao.add_activity(
        action="loan.returned" if outcome == 'normal' else f"loan.{outcome}",
        entity_type="loan",
        entity_id=loan_id,
        user_id=actor_id,
        details={
            "student_id": student.id,
            "equipment_id": equipment.id,
            "verdict": verdict,
            "trust_score": trust.round_score(score_raw),
        },
        created_at=now,
        conn=conn,
    )

    closed = replace(loan, returned_at=now, status='returned', is_overdue=False, outcome=outcome)
    return ReturnResult(
        loan=closed,
        outcome=outcome,
        equipment_status=equipment_status,
        verdict=verdict,
        trust_score=trust.round_score(score_raw),
        suspension=suspension,
    )
