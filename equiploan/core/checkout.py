"""
Equipment checkout - creates loans while enforcing the borrowing rules the
return processor relies on: one open loan per item, no borrowing while
suspended.
"""

from datetime import datetime
from typing import Callable, Optional

from . import config, dao
from .db import transaction
from .errors import EquipmentUnavailableError, NotFoundError, StudentSuspendedError, ValidationError
from .schema import Loan
from .suspension import is_suspended
from ..util.logging import logger


def checkout_equipment(student_id: str, equipment_id: str, due_at: datetime,
                       actor_id: Optional[str] = None,
                       clock: Callable[[], datetime] = config.now) -> Loan:
    """Lend an available item to a student until `due_at`."""
    now = config.as_local(clock())
    due_at = config.as_local(due_at)
    if due_at is None or due_at <= now:
        raise ValidationError("due_at must be in the future")

    with transaction() as conn:
        student = dao.get_student(student_id, conn=conn)
        if student is None:
            raise NotFoundError("Student", student_id)

        equipment = dao.get_equipment(equipment_id, conn=conn)
        if equipment is None:
            raise NotFoundError("Equipment", equipment_id)

        if is_suspended(student, now):
            logger.log_rejection("loan.checkout", StudentSuspendedError.code, {"student_id": student_id})
            raise StudentSuspendedError(student_id, student.blacklist_end_date)

        if equipment.status != 'available' or dao.get_open_loan_for_equipment(equipment_id, conn=conn):
            logger.log_rejection("loan.checkout", EquipmentUnavailableError.code, {"equipment_id": equipment_id})
            raise EquipmentUnavailableError(equipment_id, equipment.status)

        loan = dao.create_loan(student_id, equipment_id, now, due_at, borrowed_by_user_id=actor_id, conn=conn)
        dao.update_equipment_status(equipment_id, 'borrowed', now, conn=conn)
        dao.add_activity(
            action="loan.created",
            entity_type="loan",
            entity_id=loan.id,
            user_id=actor_id,
            details={"student_id": student_id, "equipment_id": equipment_id, "due_at": due_at.isoformat()},
            created_at=now,
            conn=conn,
        )

    logger.log_operation("loan.checkout", "success", {
        "loan_id": loan.id,
        "student_id": student_id,
        "equipment_id": equipment_id
    })
    return loan
