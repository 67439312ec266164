"""
Record types for the loan engine. These mirror the SQLite rows one-to-one.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

EQUIPMENT_STATUSES = ('available', 'borrowed', 'reserved', 'repair', 'lost', 'damaged')
LOAN_STATUSES = ('active', 'returned', 'overdue')
OUTCOMES = ('normal', 'lost', 'damaged')
VERDICTS = ('on_time', 'late', 'penalty')


def _isoformat(value):
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class Student:
    id: str
    student_id: str
    full_name: str
    trust_score: float
    trust_score_raw: float
    created_at: datetime
    updated_at: datetime
    year_group: Optional[str] = None
    class_name: Optional[str] = None
    house: Optional[str] = None
    email: Optional[str] = None
    is_blacklisted: bool = False
    blacklist_end_date: Optional[datetime] = None
    blacklist_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for field in ('created_at', 'updated_at', 'blacklist_end_date'):
            data[field] = _isoformat(data[field])
        del data['trust_score_raw']
        return data


@dataclass
class EquipmentItem:
    id: str
    item_id: str
    name: str
    status: str  # one of EQUIPMENT_STATUSES
    created_at: datetime
    updated_at: datetime
    category: Optional[str] = None
    location: Optional[str] = None
    condition_notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _isoformat(self.created_at)
        data['updated_at'] = _isoformat(self.updated_at)
        return data


@dataclass
class Loan:
    id: str
    student_id: str
    equipment_id: str
    borrowed_at: datetime
    due_at: Optional[datetime]
    created_at: datetime
    returned_at: Optional[datetime] = None
    status: str = 'active'  # one of LOAN_STATUSES
    is_overdue: bool = False
    outcome: Optional[str] = None  # one of OUTCOMES once closed
    borrowed_by_user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for field in ('borrowed_at', 'due_at', 'returned_at', 'created_at'):
            data[field] = _isoformat(data[field])
        return data


@dataclass(frozen=True)
class LoanState:
    """Canonical status of a loan at a given instant."""
    status: str
    is_overdue: bool


@dataclass(frozen=True)
class BlacklistEntry:
    """Historical suspension record. Never mutated after creation."""
    id: str
    student_id: str
    start_date: datetime
    end_date: datetime
    reason: str
    created_at: datetime
    is_active: bool = True
    blacklisted_by_user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for field in ('start_date', 'end_date', 'created_at'):
            data[field] = _isoformat(data[field])
        return data


@dataclass(frozen=True)
class TrustEvent:
    """One verdict in a student's append-only score log."""
    id: int
    student_id: str
    loan_id: Optional[str]
    verdict: str  # one of VERDICTS
    score_before: float
    score_after: float
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _isoformat(self.created_at)
        return data


@dataclass(frozen=True)
class ActivityEntry:
    id: int
    user_id: Optional[str]
    action: str
    entity_type: str
    entity_id: Optional[str]
    details: Dict[str, Any]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _isoformat(self.created_at)
        return data
