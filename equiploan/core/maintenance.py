"""
Batch repair routines: full trust score replay, persisted loan status refresh
and database integrity checks. The hot path never calls these.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from . import config, dao, trust
from .db import get_db, health_check, transaction
from .errors import LoanEngineError, NotFoundError
from .loan_state import resolve_status
from ..util.logging import logger, audit_event


@dataclass
class MaintenanceReport:
    """Maintenance operation report."""
    operation: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    issues_found: int = 0
    issues_resolved: int = 0
    actions_taken: List[str] = None
    errors: List[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.actions_taken is None:
            self.actions_taken = []
        if self.errors is None:
            self.errors = []
        if self.metadata is None:
            self.metadata = {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "issues_found": self.issues_found,
            "issues_resolved": self.issues_resolved,
            "actions_taken": self.actions_taken,
            "errors": self.errors,
            "metadata": self.metadata
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data


class MaintenanceError(LoanEngineError):
    """Maintenance operations are switched off."""

    code = "MAINTENANCE_DISABLED"


def _require_enabled():
    if not config.MAINTENANCE_ENABLED:
        raise MaintenanceError("Maintenance is disabled. Enable with MAINTENANCE_ENABLED=true")


def recalculate_trust_scores(student_id: str = None,
                             clock: Callable[[], datetime] = config.now) -> MaintenanceReport:
    """Replay returned-loan history from the base score and rewrite stored scores.

    Args:
        student_id: limit the replay to one student; all students when None
    """
    _require_enabled()

    report = MaintenanceReport(operation="trust_recalculation", started_at=clock())

    if student_id is not None:
        student = dao.get_student(student_id)
        if student is None:
            raise NotFoundError("Student", student_id)
        students = [student]
    else:
        students = dao.list_students()

    for student in students:
        with transaction() as conn:
            history = dao.list_returned_loans(student.id, conn=conn)
            raw = trust.compute_raw_trust_score(history)
            score = trust.round_score(raw)
            counted = len(trust.chronological_verdicts(history))

            if raw != student.trust_score_raw or score != student.trust_score:
                report.issues_found += 1
                dao.update_student_trust(student.id, score, raw, clock(), conn=conn)
                report.issues_resolved += 1
                report.actions_taken.append(
                    f"{student.student_id}: {student.trust_score} -> {score} ({counted} returns)"
                )

        logger.log_trust_recalculation(student.id, student.trust_score, score, counted)

    report.metadata["students_processed"] = len(students)
    report.completed_at = clock()

    audit_event(
        event_type="maintenance.trust_recalculation",
        identifiers={"operation": report.operation},
        payload={"students_processed": len(students), "scores_changed": report.issues_resolved}
    )
    return report


def refresh_loan_statuses(clock: Callable[[], datetime] = config.now) -> MaintenanceReport:
    """Persist resolve_status() for every open loan."""
    _require_enabled()

    now = clock()
    report = MaintenanceReport(operation="loan_status_refresh", started_at=now)
    open_loans = dao.list_open_loans()

    overdue = 0
    with transaction() as conn:
        for loan in open_loans:
            state = resolve_status(loan, now)
            if state.is_overdue:
                overdue += 1
            if (loan.status, loan.is_overdue) != (state.status, state.is_overdue):
                report.issues_found += 1
                if dao.update_loan_state(loan.id, state.status, state.is_overdue, conn=conn):
                    report.issues_resolved += 1
                    report.actions_taken.append(f"{loan.id}: {loan.status} -> {state.status}")

    report.metadata["open_loans"] = len(open_loans)
    report.metadata["overdue"] = overdue
    report.completed_at = clock()

    logger.log_operation("maintenance.loan_status_refresh", "success", report.metadata)
    return report


def check_database_integrity(clock: Callable[[], datetime] = config.now) -> MaintenanceReport:
    """Check SQLite integrity and the loan consistency rules the engine depends on."""
    _require_enabled()

    report = MaintenanceReport(operation="database_integrity_check", started_at=clock())

    if not health_check():
        report.errors.append("Required tables are missing")
        report.completed_at = clock()
        return report

    with get_db() as conn:
        result = conn.execute("PRAGMA integrity_check").fetchone()[0]
        if result != "ok":
            report.errors.append(f"SQLite integrity check failed: {result}")

        # returned_at is set iff status is returned
        mismatched = conn.execute("""
            SELECT COUNT(*) FROM loans
            WHERE (returned_at IS NULL AND status = 'returned')
               OR (returned_at IS NOT NULL AND status != 'returned')
        """).fetchone()[0]
        if mismatched:
            report.issues_found += mismatched
            report.errors.append(f"{mismatched} loans have returned_at inconsistent with status")

        # At most one open loan per equipment item
        double_booked = conn.execute("""
            SELECT equipment_id FROM loans
            WHERE returned_at IS NULL
            GROUP BY equipment_id HAVING COUNT(*) > 1
        """).fetchall()
        if double_booked:
            report.issues_found += len(double_booked)
            report.errors.append(
                f"{len(double_booked)} equipment items have more than one open loan: "
                + ", ".join(row[0] for row in double_booked)
            )

        out_of_range = conn.execute(
            "SELECT COUNT(*) FROM students WHERE trust_score < 0 OR trust_score > ?",
            (config.MAX_TRUST_SCORE,)
        ).fetchone()[0]
        if out_of_range:
            report.issues_found += out_of_range
            report.errors.append(f"{out_of_range} students have a trust score outside 0-{config.MAX_TRUST_SCORE}")

    report.completed_at = clock()
    return report


def perform_full_maintenance(clock: Callable[[], datetime] = config.now) -> List[MaintenanceReport]:
    """Integrity check, then status refresh, then trust replay."""
    return [
        check_database_integrity(clock),
        refresh_loan_statuses(clock),
        recalculate_trust_scores(clock=clock),
    ]
