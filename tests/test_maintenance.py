"""
Batch repair tests - trust score replay, status refresh and integrity checks.
"""

from datetime import timedelta

import pytest

from conftest import NOW, fixed_clock
from equiploan.core import dao
from equiploan.core.errors import LoanEngineError, NotFoundError
from equiploan.core.maintenance import (
    MaintenanceError,
    check_database_integrity,
    perform_full_maintenance,
    recalculate_trust_scores,
    refresh_loan_statuses,
)

def close(loan, returned_at, outcome='normal'):
    dao.close_loan(loan.id, returned_at, outcome)


class TestRecalculateTrustScores:

    def test_repairs_drifted_score(self, student_factory, loan_factory, equipment_factory):
        student = student_factory()
        first = loan_factory(student=student, equipment=equipment_factory("A"), due_at=NOW)
        second = loan_factory(student=student, equipment=equipment_factory("B"), due_at=NOW)
        close(first, NOW - timedelta(hours=1))             # on time: 75
        close(second, NOW + timedelta(hours=1))            # late: 37.5
        dao.update_student_trust(student.id, 99.0, 99.0, NOW)

        report = recalculate_trust_scores(clock=fixed_clock())

        assert dao.get_student(student.id).trust_score == 37.5
        assert report.issues_found == 1
        assert report.issues_resolved == 1
        assert report.metadata["students_processed"] == 1

    def test_student_without_returns_resets_to_base(self, student_factory):
        student = student_factory(trust_score=90.0)

        recalculate_trust_scores(student.id, clock=fixed_clock())

        assert dao.get_student(student.id).trust_score == 50.0

    def test_lost_loans_replay_as_penalty(self, student_factory, loan_factory):
        student = student_factory()
        loan = loan_factory(student=student, due_at=NOW)
        close(loan, NOW - timedelta(hours=1), outcome='lost')

        recalculate_trust_scores(student.id, clock=fixed_clock())

        assert dao.get_student(student.id).trust_score == 25.0

    def test_consistent_scores_are_untouched(self, student_factory):
        student_factory()
        report = recalculate_trust_scores(clock=fixed_clock())
        assert report.issues_found == 0
        assert report.actions_taken == []

    def test_unknown_student(self):
        with pytest.raises(NotFoundError):
            recalculate_trust_scores("nobody", clock=fixed_clock())


def test_refresh_loan_statuses(loan_factory, equipment_factory):
    overdue = loan_factory(equipment=equipment_factory("A"), due_at=NOW - timedelta(days=1))
    active = loan_factory(equipment=equipment_factory("B"), due_at=NOW + timedelta(days=1))

    report = refresh_loan_statuses(clock=fixed_clock())

    assert dao.get_loan(overdue.id).status == 'overdue'
    assert dao.get_loan(active.id).status == 'active'
    assert report.issues_resolved == 1
    assert report.metadata == {"open_loans": 2, "overdue": 1}


def test_already_persisted_overdue_loans_are_counted(loan_factory):
    loan = loan_factory(due_at=NOW - timedelta(days=1))
    refresh_loan_statuses(clock=fixed_clock())

    report = refresh_loan_statuses(clock=fixed_clock(NOW + timedelta(hours=1)))

    assert dao.get_loan(loan.id).status == 'overdue'
    assert report.issues_found == 0
    assert report.metadata == {"open_loans": 1, "overdue": 1}


class TestIntegrity:

    def test_clean_database(self, loan_factory):
        loan_factory()
        report = check_database_integrity(clock=fixed_clock())
        assert report.errors == []
        assert report.issues_found == 0

    def test_detects_double_booked_equipment(self, student_factory, equipment_factory):
        equipment = equipment_factory()
        for name in ("A", "B"):
            dao.create_loan(student_factory(name=name).id, equipment.id, NOW, NOW + timedelta(days=1))

        report = check_database_integrity(clock=fixed_clock())

        assert report.issues_found == 1
        assert equipment.id in report.errors[0]


def test_full_maintenance_runs_every_operation(loan_factory):
    loan_factory()
    reports = perform_full_maintenance(clock=fixed_clock())
    assert [r.operation for r in reports] == [
        "database_integrity_check",
        "loan_status_refresh",
        "trust_recalculation",
    ]
    assert all(r.completed_at == NOW for r in reports)


def test_disabled_maintenance(maintenance_disabled):
    with pytest.raises(MaintenanceError) as exc_info:
        recalculate_trust_scores(clock=fixed_clock())

    assert isinstance(exc_info.value, LoanEngineError)
    assert exc_info.value.code == "MAINTENANCE_DISABLED"


def test_report_to_dict(student_factory):
    student_factory()
    data = recalculate_trust_scores(clock=fixed_clock()).to_dict()
    assert data["operation"] == "trust_recalculation"
    assert data["started_at"] == NOW.isoformat()
    assert data["completed_at"] == NOW.isoformat()
