"""
Checkout tests - loan creation and the borrowing rules it enforces.
"""

from datetime import timedelta, timezone

import pytest

from conftest import NOW, fixed_clock
from equiploan.core import dao
from equiploan.core.checkout import checkout_equipment
from equiploan.core.errors import (
    EquipmentUnavailableError,
    NotFoundError,
    StudentSuspendedError,
    ValidationError,
)
from equiploan.core.returns import process_return
from equiploan.core.suspension import suspend


def test_checkout_creates_active_loan(student_factory, equipment_factory):
    student = student_factory()
    equipment = equipment_factory()

    loan = checkout_equipment(student.id, equipment.id, NOW + timedelta(days=2),
                              actor_id="captain-3", clock=fixed_clock())

    stored = dao.get_loan(loan.id)
    assert stored.status == 'active'
    assert stored.returned_at is None
    assert stored.borrowed_at == NOW
    assert stored.borrowed_by_user_id == "captain-3"
    assert dao.get_equipment(equipment.id).status == 'borrowed'
    assert dao.list_activity(entity_type="loan", entity_id=loan.id)[0].action == "loan.created"


def test_suspended_student_cannot_borrow(student_factory, equipment_factory):
    student = student_factory()
    equipment = equipment_factory()
    suspend(student.id, 7, "Lost equipment: Ball", clock=fixed_clock())

    with pytest.raises(StudentSuspendedError):
        checkout_equipment(student.id, equipment.id, NOW + timedelta(days=5),
                           clock=fixed_clock(NOW + timedelta(days=3)))

    assert dao.get_equipment(equipment.id).status == 'available'


def test_expired_suspension_allows_borrowing(student_factory, equipment_factory):
    student = student_factory()
    equipment = equipment_factory()
    suspend(student.id, 7, "Lost equipment: Ball", clock=fixed_clock())

    later = NOW + timedelta(days=8)
    loan = checkout_equipment(student.id, equipment.id, later + timedelta(days=1), clock=fixed_clock(later))

    assert loan.status == 'active'


def test_item_on_loan_cannot_be_borrowed_twice(student_factory, equipment_factory):
    equipment = equipment_factory()
    checkout_equipment(student_factory().id, equipment.id, NOW + timedelta(days=1), clock=fixed_clock())

    with pytest.raises(EquipmentUnavailableError):
        checkout_equipment(student_factory(name="Sam Lee").id, equipment.id,
                           NOW + timedelta(days=1), clock=fixed_clock())


@pytest.mark.parametrize("status", ['repair', 'lost', 'damaged', 'reserved'])
def test_unavailable_status_rejected(student_factory, equipment_factory, status):
    equipment = equipment_factory(status=status)
    with pytest.raises(EquipmentUnavailableError) as exc_info:
        checkout_equipment(student_factory().id, equipment.id, NOW + timedelta(days=1), clock=fixed_clock())
    assert exc_info.value.status == status


def test_returned_item_can_be_borrowed_again(student_factory, equipment_factory):
    equipment = equipment_factory()
    first = checkout_equipment(student_factory().id, equipment.id, NOW + timedelta(days=1), clock=fixed_clock())
    process_return(first.id, clock=fixed_clock(NOW + timedelta(hours=5)))

    second = checkout_equipment(student_factory(name="Sam Lee").id, equipment.id,
                                NOW + timedelta(days=2), clock=fixed_clock(NOW + timedelta(hours=6)))

    assert second.id != first.id


def test_utc_due_date_is_stored_as_local_time(student_factory, equipment_factory):
    due_utc = (NOW + timedelta(days=2)).astimezone(timezone.utc)

    loan = checkout_equipment(student_factory().id, equipment_factory().id, due_utc, clock=fixed_clock())

    stored = dao.get_loan(loan.id)
    assert stored.due_at == NOW + timedelta(days=2)
    assert stored.due_at.tzinfo is None


def test_utc_due_date_in_the_past_rejected(student_factory, equipment_factory):
    due_utc = (NOW - timedelta(minutes=1)).astimezone(timezone.utc)
    with pytest.raises(ValidationError):
        checkout_equipment(student_factory().id, equipment_factory().id, due_utc, clock=fixed_clock())


def test_due_date_must_be_in_future(student_factory, equipment_factory):
    with pytest.raises(ValidationError):
        checkout_equipment(student_factory().id, equipment_factory().id, NOW, clock=fixed_clock())


def test_unknown_records(student_factory, equipment_factory):
    with pytest.raises(NotFoundError):
        checkout_equipment("nobody", equipment_factory().id, NOW + timedelta(days=1), clock=fixed_clock())
    with pytest.raises(NotFoundError):
        checkout_equipment(student_factory().id, "nothing", NOW + timedelta(days=1), clock=fixed_clock())
