"""
Loan state resolver.

resolve_status() is pure: it can be called as often as the display needs
without touching storage. refresh_loan_status() is the separate write path
for callers that want the resolved fields to be durable.
"""

from datetime import datetime
from typing import Callable, Dict, List

from . import config, dao
from .errors import NotFoundError
from .schema import Loan, LoanState
from ..util.logging import logger


def resolve_status(loan: Loan, now: datetime) -> LoanState:
    """Canonical status of a loan at `now`.

    A returned loan resolves to returned/not overdue forever, whether or not it
    came back late. An open loan is overdue once its due date has passed; an
    open loan without a due date is never overdue.
    """
    if loan.returned_at is not None:
        return LoanState(status='returned', is_overdue=False)

    due_at = config.as_local(loan.due_at)
    is_overdue = due_at is not None and due_at < config.as_local(now)
    return LoanState(status='overdue' if is_overdue else 'active', is_overdue=is_overdue)


def refresh_loan_status(loan_id: str, clock: Callable[[], datetime] = config.now) -> LoanState:
    """Resolve a loan's status and store it."""
    loan = dao.get_loan(loan_id)
    if loan is None:
        raise NotFoundError("Loan", loan_id)

    state = resolve_status(loan, clock())
    changed = (loan.status, loan.is_overdue) != (state.status, state.is_overdue)

    persisted = False
    if changed:
        persisted = dao.update_loan_state(loan_id, state.status, state.is_overdue)

    logger.log_status_refresh(loan_id, state.status, state.is_overdue, persisted)
    return state


def list_open_loans(clock: Callable[[], datetime] = config.now) -> Dict[str, List[Loan]]:
    """Unreturned loans split into overdue and active, soonest due first.

    Loans in the result carry their resolved status; storage is not modified.
    """
    now = clock()
    overdue, active = [], []

    for loan in dao.list_open_loans():
        state = resolve_status(loan, now)
        loan.status, loan.is_overdue = state.status, state.is_overdue
        (overdue if state.is_overdue else active).append(loan)

    def due_key(loan: Loan):
        return (loan.due_at is None, loan.due_at or datetime.max)

    overdue.sort(key=due_key)
    active.sort(key=due_key)
    return {"overdue": overdue, "active": active}
