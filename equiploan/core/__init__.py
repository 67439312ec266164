"""
Loan lifecycle core - trust scores, loan status, returns and suspensions
over the canonical SQLite store.
"""

# Package initialization for core module
from .errors import (
    LoanEngineError,
    NotFoundError,
    AlreadyReturnedError,
    ValidationError,
    StudentSuspendedError,
    EquipmentUnavailableError
)
from .trust import apply_outcome, compute_trust_score
from .loan_state import resolve_status, refresh_loan_status, list_open_loans
from .returns import process_return, ReturnResult
from .suspension import suspend, is_suspended, list_suspensions
from .checkout import checkout_equipment

__all__ = [
    'LoanEngineError',
    'NotFoundError',
    'AlreadyReturnedError',
    'ValidationError',
    'StudentSuspendedError',
    'EquipmentUnavailableError',
    'apply_outcome',
    'compute_trust_score',
    'resolve_status',
    'refresh_loan_status',
    'list_open_loans',
    'process_return',
    'ReturnResult',
    'suspend',
    'is_suspended',
    'list_suspensions',
    'checkout_equipment'
]
