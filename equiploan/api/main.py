"""
HTTP API over the loan engine. The acting user is taken from the X-User-Id
header and recorded as an opaque audit field.
"""

from datetime import datetime
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ActivityResponse,
    CheckoutRequest,
    EquipmentCreateRequest,
    EquipmentResponse,
    ErrorResponse,
    HealthResponse,
    LoanResponse,
    LoanStateResponse,
    OpenLoansResponse,
    ReturnRequest,
    ReturnResponse,
    StudentCreateRequest,
    StudentResponse,
    SuspendRequest,
    SuspensionResponse,
    TrustEventResponse,
    TrustResponse,
)
from ..core import config, dao
from ..core.checkout import checkout_equipment
from ..core.db import health_check, init_db
from ..core.errors import (
    AlreadyReturnedError,
    EquipmentUnavailableError,
    LoanEngineError,
    NotFoundError,
    StudentSuspendedError,
    ValidationError,
)
from ..core.loan_state import list_open_loans, refresh_loan_status, resolve_status
from ..core.maintenance import MaintenanceError, recalculate_trust_scores
from ..core.returns import process_return
from ..core.schema import Student
from ..core.suspension import is_suspended, list_suspensions, suspend
from ..util.logging import audit_event, logger

init_db()

for issue in config.validate_config():
    logger.warning(f"Configuration issue: {issue}")

# Initialize the FastAPI application
app = FastAPI(
    title="Equipment Loan API",
    version=config.VERSION,
    description="School equipment loans, trust scores and suspensions over a local SQLite store",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None
)

# Add CORS middleware to allow frontend connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],  # Allow web UI
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    NotFoundError: 404,
    AlreadyReturnedError: 409,
    StudentSuspendedError: 409,
    EquipmentUnavailableError: 409,
    ValidationError: 422,
    MaintenanceError: 503,
}


@app.exception_handler(LoanEngineError)
async def engine_error_handler(request: Request, exc: LoanEngineError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    body = ErrorResponse(error_type=exc.code, message=exc.message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def get_clock() -> Callable[[], datetime]:
    """Clock dependency; tests override it with a fixed time."""
    return config.now


def get_actor(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id or None


def _student_response(student: Student, now: datetime) -> StudentResponse:
    return StudentResponse(
        id=student.id,
        student_id=student.student_id,
        full_name=student.full_name,
        year_group=student.year_group,
        class_name=student.class_name,
        house=student.house,
        email=student.email,
        trust_score=student.trust_score,
        is_blacklisted=student.is_blacklisted,
        is_suspended=is_suspended(student, now),
        blacklist_end_date=student.blacklist_end_date,
        blacklist_reason=student.blacklist_reason,
        created_at=student.created_at,
        updated_at=student.updated_at,
    )


def _require_student(student_id: str) -> Student:
    student = dao.get_student(student_id)
    if student is None:
        raise NotFoundError("Student", student_id)
    return student


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    counts = dao.get_counts() if db_health else {}
    config_issues = config.validate_config()

    if not db_health:
        status = "unhealthy"
    elif config_issues:
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        version=config.VERSION,
        db_health=db_health,
        counts=counts,
        config_issues=config_issues
    )


# Students

@app.post("/students", response_model=StudentResponse, status_code=201)
def create_student_endpoint(req: StudentCreateRequest, actor: Optional[str] = Depends(get_actor),
                            clock=Depends(get_clock)):
    now = clock()
    student = dao.create_student(
        student_id=req.student_id,
        full_name=req.full_name,
        year_group=req.year_group,
        class_name=req.class_name,
        house=req.house,
        email=req.email,
        created_at=now,
    )
    audit_event(
        event_type="student.enrolled",
        identifiers={"student_id": student.id, "actor_id": actor},
        payload=req.model_dump()
    )
    return _student_response(student, now)


@app.get("/students/{student_id}", response_model=StudentResponse)
def get_student_endpoint(student_id: str, clock=Depends(get_clock)):
    return _student_response(_require_student(student_id), clock())


@app.get("/students/{student_id}/trust", response_model=TrustResponse)
def get_trust_endpoint(student_id: str):
    """Current trust score with the verdict log it was folded from."""
    student = _require_student(student_id)
    events = dao.list_trust_events(student_id)
    return TrustResponse(
        student_id=student.id,
        trust_score=student.trust_score,
        events=[
            TrustEventResponse(
                loan_id=e.loan_id,
                verdict=e.verdict,
                score_before=e.score_before,
                score_after=e.score_after,
                created_at=e.created_at
            )
            for e in events
        ]
    )


@app.post("/students/{student_id}/trust/recalculate", response_model=StudentResponse)
def recalculate_trust_endpoint(student_id: str, clock=Depends(get_clock)):
    """Replay the student's returned loans from the base score."""
    recalculate_trust_scores(student_id, clock=clock)
    return _student_response(_require_student(student_id), clock())


@app.post("/students/{student_id}/suspend", response_model=SuspensionResponse, status_code=201)
def suspend_student_endpoint(student_id: str, req: SuspendRequest,
                             actor: Optional[str] = Depends(get_actor), clock=Depends(get_clock)):
    entry = suspend(student_id, req.days, req.reason, actor_id=actor, clock=clock)
    return SuspensionResponse(**entry.to_dict())


@app.get("/students/{student_id}/suspensions", response_model=List[SuspensionResponse])
def list_suspensions_endpoint(student_id: str):
    return [SuspensionResponse(**entry.to_dict()) for entry in list_suspensions(student_id)]


# Equipment

@app.post("/equipment", response_model=EquipmentResponse, status_code=201)
def create_equipment_endpoint(req: EquipmentCreateRequest, clock=Depends(get_clock)):
    item = dao.create_equipment(
        item_id=req.item_id,
        name=req.name,
        category=req.category,
        location=req.location,
        status=req.status,
        created_at=clock(),
    )
    return EquipmentResponse(**item.to_dict())


@app.get("/equipment/{equipment_id}", response_model=EquipmentResponse)
def get_equipment_endpoint(equipment_id: str):
    item = dao.get_equipment(equipment_id)
    if item is None:
        raise NotFoundError("Equipment", equipment_id)
    return EquipmentResponse(**item.to_dict())


# Loans
# Define /loans/open BEFORE /loans/{loan_id} to avoid path parameter conflict

@app.post("/loans", response_model=LoanResponse, status_code=201)
def checkout_endpoint(req: CheckoutRequest, actor: Optional[str] = Depends(get_actor),
                      clock=Depends(get_clock)):
    loan = checkout_equipment(req.student_id, req.equipment_id, req.due_at, actor_id=actor, clock=clock)
    return LoanResponse(**loan.to_dict())


@app.get("/loans/open", response_model=OpenLoansResponse)
def open_loans_endpoint(clock=Depends(get_clock)):
    grouped = list_open_loans(clock)
    return OpenLoansResponse(
        overdue=[LoanResponse(**loan.to_dict()) for loan in grouped["overdue"]],
        active=[LoanResponse(**loan.to_dict()) for loan in grouped["active"]],
    )


@app.get("/loans/{loan_id}", response_model=LoanResponse)
def get_loan_endpoint(loan_id: str, clock=Depends(get_clock)):
    """Loan with its status resolved for display; storage is not modified."""
    loan = dao.get_loan(loan_id)
    if loan is None:
        raise NotFoundError("Loan", loan_id)
    state = resolve_status(loan, clock())
    loan.status, loan.is_overdue = state.status, state.is_overdue
    return LoanResponse(**loan.to_dict())


@app.post("/loans/{loan_id}/refresh", response_model=LoanStateResponse)
def refresh_loan_endpoint(loan_id: str, clock=Depends(get_clock)):
    """Resolve and persist the loan's status fields."""
    state = refresh_loan_status(loan_id, clock)
    return LoanStateResponse(loan_id=loan_id, status=state.status, is_overdue=state.is_overdue)


@app.post("/loans/{loan_id}/return", response_model=ReturnResponse)
def return_loan_endpoint(loan_id: str, req: ReturnRequest, actor: Optional[str] = Depends(get_actor),
                         clock=Depends(get_clock)):
    result = process_return(loan_id, req.outcome, actor_id=actor, clock=clock)
    return ReturnResponse(**result.to_dict())


# Activity

@app.get("/activity", response_model=List[ActivityResponse])
def activity_endpoint(
    entity_type: Optional[str] = Query(None, description="Filter by entity type: loan, student"),
    entity_id: Optional[str] = Query(None, description="Filter by entity id"),
    limit: int = Query(50, description="Maximum number of entries to return", le=200)
):
    if entity_type and entity_type not in ['loan', 'student']:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid entity_type '{entity_type}'. Must be one of: loan, student"
        )
    entries = dao.list_activity(entity_type=entity_type, entity_id=entity_id, limit=limit)
    return [ActivityResponse(**entry.to_dict()) for entry in entries]
