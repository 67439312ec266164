"""
Shared fixtures: a throwaway database per session, a fresh schema per test
and a fixed clock.
"""

import os
import tempfile
import uuid
from datetime import datetime, timedelta

import pytest

# Set up test environment with temporary database before the package is imported
TEST_DB_PATH = tempfile.mkstemp(suffix='.db')[1]
os.environ['DB_PATH'] = TEST_DB_PATH
os.environ['MAINTENANCE_ENABLED'] = 'true'

from equiploan.core import config, dao
from equiploan.core.db import reset_db

NOW = datetime(2026, 3, 2, 9, 0, 0)


def fixed_clock(moment=NOW):
    return lambda: moment


@pytest.fixture(autouse=True)
def fresh_db():
    """Recreate the schema for each test."""
    reset_db()
    yield


@pytest.fixture
def clock():
    return fixed_clock()


@pytest.fixture
def maintenance_disabled():
    original_value = config.MAINTENANCE_ENABLED
    config.MAINTENANCE_ENABLED = False
    yield
    config.MAINTENANCE_ENABLED = original_value


@pytest.fixture
def student_factory():
    def make(trust_score=None, name="Alex Morgan", number=None):
        return dao.create_student(
            student_id=number or f"S-{uuid.uuid4().hex[:6]}",
            full_name=name,
            year_group="Year 10",
            trust_score=trust_score,
            created_at=NOW - timedelta(days=90),
        )
    return make


@pytest.fixture
def equipment_factory():
    def make(name="Basketball", status="available"):
        return dao.create_equipment(
            item_id=f"EQ-{name[:3].upper()}",
            name=name,
            category="Basketball",
            status=status,
            created_at=NOW - timedelta(days=90),
        )
    return make


@pytest.fixture
def loan_factory(student_factory, equipment_factory):
    """Open loan borrowed a week before NOW; equipment is marked borrowed."""
    def make(student=None, equipment=None, due_at=NOW + timedelta(days=1), borrowed_at=NOW - timedelta(days=7)):
        student = student or student_factory()
        equipment = equipment or equipment_factory()
        loan = dao.create_loan(student.id, equipment.id, borrowed_at, due_at, borrowed_by_user_id="captain-1")
        dao.update_equipment_status(equipment.id, "borrowed", borrowed_at)
        return loan
    return make
