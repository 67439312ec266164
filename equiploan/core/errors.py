"""
Engine exceptions.

None of these are transient: they describe caller-input violations or lost
races, and the engine never retries them internally.
"""


class LoanEngineError(Exception):
    """Base class for errors raised by the loan engine."""

    code = "ENGINE_ERROR"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LoanEngineError):
    """A referenced student, equipment item or loan does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class AlreadyReturnedError(LoanEngineError):
    """The loan was already closed; a loan may be closed exactly once."""

    code = "ALREADY_RETURNED"

    def __init__(self, loan_id: str):
        super().__init__(f"Loan '{loan_id}' has already been returned")
        self.loan_id = loan_id


class ValidationError(LoanEngineError):
    """Malformed input such as an unknown outcome or a non-positive suspension."""

    code = "VALIDATION_ERROR"


class StudentSuspendedError(LoanEngineError):
    """The student is inside an active suspension window."""

    code = "STUDENT_SUSPENDED"

    def __init__(self, student_id: str, until):
        super().__init__(f"Student '{student_id}' is suspended until {until.isoformat()}")
        self.student_id = student_id
        self.until = until


class EquipmentUnavailableError(LoanEngineError):
    """The equipment item cannot be checked out in its current state."""

    code = "EQUIPMENT_UNAVAILABLE"

    def __init__(self, equipment_id: str, status: str):
        super().__init__(f"Equipment '{equipment_id}' is not available (status: {status})")
        self.equipment_id = equipment_id
        self.status = status
