"""
Structured operation logging for the loan engine.
Every engine write is reported as "Operation: X, Status: Y, Details: {...}".
"""

import logging
from datetime import datetime
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for loan, trust score and suspension operations."""

    def __init__(self, name: str = "equiploan"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_return(self, loan_id: str, outcome: str, student_id: str, equipment_id: str,
                   status: str = "success", details: Dict[str, Any] = None):
        """Log a loan closure."""
        log_details = {
            "loan_id": loan_id,
            "outcome": outcome,
            "student_id": student_id,
            "equipment_id": equipment_id
        }
        if details:
            log_details.update(details)

        self.log_operation(f"loan.return.{outcome}", status, log_details)

    def log_trust_update(self, student_id: str, verdict: str, score_before: float, score_after: float,
                         loan_id: str = None):
        """Log a single trust score step."""
        log_details = {
            "student_id": student_id,
            "verdict": verdict,
            "score_before": round(score_before, 4),
            "score_after": round(score_after, 4)
        }
        if loan_id:
            log_details["loan_id"] = loan_id

        self.log_operation("trust.update", "applied", log_details)

    def log_trust_recalculation(self, student_id: str, previous: float, recalculated: float, returns_counted: int):
        """Log a full trust score replay."""
        log_details = {
            "student_id": student_id,
            "previous": previous,
            "recalculated": recalculated,
            "returns_counted": returns_counted,
            "changed": previous != recalculated
        }
        self.log_operation("trust.recalculate", "success", log_details)

    def log_suspension(self, student_id: str, days: int, end_date: datetime, reason: str, actor_id: str = None):
        """Log a suspension being applied."""
        log_details = {
            "student_id": student_id,
            "days": days,
            "end_date": end_date.isoformat(),
            "reason": reason[:100] if reason else "",  # Limit reason length
            "actor_id": actor_id
        }
        self.log_operation("suspension.applied", "active", log_details)

    def log_status_refresh(self, loan_id: str, status: str, is_overdue: bool, persisted: bool):
        """Log a persisted loan status refresh."""
        log_details = {
            "loan_id": loan_id,
            "status": status,
            "is_overdue": is_overdue
        }
        self.log_operation("loan.status_refresh", "persisted" if persisted else "unchanged", log_details)

    def log_rejection(self, operation: str, error_code: str, identifiers: Dict[str, Any] = None):
        """Log an operation refused by the engine."""
        log_details = {"error_code": error_code}
        if identifiers:
            log_details.update(identifiers)

        self.log_operation(operation, "rejected", log_details)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    # Student contact details stay out of the logs
    if sensitive_fields is None:
        sensitive_fields = ['email', 'full_name', 'password', 'password_hash']

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = ['email', 'full_name', 'password', 'password_hash']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
