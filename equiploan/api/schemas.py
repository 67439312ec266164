"""
Request/response models for the loan engine HTTP API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from ..core import config
from ..core.schema import EQUIPMENT_STATUSES, OUTCOMES


class StudentCreateRequest(BaseModel):
    student_id: str
    full_name: str
    year_group: Optional[str] = None
    class_name: Optional[str] = None
    house: Optional[str] = None
    email: Optional[str] = None

    @field_validator('student_id')
    @classmethod
    def student_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('student_id cannot be empty')
        return v.strip()

    @field_validator('full_name')
    @classmethod
    def full_name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('full_name cannot be empty')
        return v.strip()


class StudentResponse(BaseModel):
    id: str
    student_id: str
    full_name: str
    year_group: Optional[str] = None
    class_name: Optional[str] = None
    house: Optional[str] = None
    email: Optional[str] = None
    trust_score: float
    is_blacklisted: bool
    is_suspended: bool
    blacklist_end_date: Optional[datetime] = None
    blacklist_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class EquipmentCreateRequest(BaseModel):
    item_id: str
    name: str
    category: Optional[str] = None
    location: Optional[str] = None
    status: str = 'available'

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v.strip()

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        if v not in EQUIPMENT_STATUSES:
            raise ValueError(f'status must be one of: {list(EQUIPMENT_STATUSES)}')
        return v


class EquipmentResponse(BaseModel):
    id: str
    item_id: str
    name: str
    category: Optional[str] = None
    location: Optional[str] = None
    status: str
    condition_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CheckoutRequest(BaseModel):
    student_id: str
    equipment_id: str
    due_at: datetime

    @field_validator('due_at')
    @classmethod
    def due_at_to_local_time(cls, v):
        return config.as_local(v)


class LoanResponse(BaseModel):
    id: str
    student_id: str
    equipment_id: str
    borrowed_by_user_id: Optional[str] = None
    borrowed_at: datetime
    due_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    status: str
    is_overdue: bool
    outcome: Optional[str] = None


class OpenLoansResponse(BaseModel):
    overdue: List[LoanResponse]
    active: List[LoanResponse]


class LoanStateResponse(BaseModel):
    loan_id: str
    status: str
    is_overdue: bool


class ReturnRequest(BaseModel):
    outcome: str = 'normal'

    @field_validator('outcome')
    @classmethod
    def outcome_must_be_valid(cls, v):
        if v not in OUTCOMES:
            raise ValueError(f'outcome must be one of: {list(OUTCOMES)}')
        return v


class SuspensionResponse(BaseModel):
    id: str
    student_id: str
    blacklisted_by_user_id: Optional[str] = None
    start_date: datetime
    end_date: datetime
    reason: str
    is_active: bool


class ReturnResponse(BaseModel):
    loan: LoanResponse
    outcome: str
    equipment_status: str
    verdict: Optional[str] = None
    trust_score: float
    suspension: Optional[SuspensionResponse] = None


class SuspendRequest(BaseModel):
    days: int
    reason: str

    @field_validator('days')
    @classmethod
    def days_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('days must be greater than 0')
        return v

    @field_validator('reason')
    @classmethod
    def reason_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('reason cannot be empty')
        return v


class TrustEventResponse(BaseModel):
    loan_id: Optional[str] = None
    verdict: str
    score_before: float
    score_after: float
    created_at: datetime


class TrustResponse(BaseModel):
    student_id: str
    trust_score: float
    events: List[TrustEventResponse]


class ActivityResponse(BaseModel):
    id: int
    user_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: Dict[str, Any]
    created_at: datetime


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    counts: Dict[str, int]
    config_issues: List[str] = []


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
