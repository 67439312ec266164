"""
Engine configuration - loan policy constants and storage location.
Values are read from the environment (and a local .env file) at import time.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/equiploan.db")

# Trust score policy
BASE_TRUST_SCORE = float(os.getenv("BASE_TRUST_SCORE", "50.0"))
ON_TIME_FACTOR = 1.5
LATE_FACTOR = 0.5
LOSS_PENALTY_FACTOR = float(os.getenv("LOSS_PENALTY_FACTOR", "0.5"))
MAX_TRUST_SCORE = 100.0

# Suspension windows applied by the return processor (days)
LOST_SUSPENSION_DAYS = int(os.getenv("LOST_SUSPENSION_DAYS", "14"))
DAMAGED_SUSPENSION_DAYS = int(os.getenv("DAMAGED_SUSPENSION_DAYS", "7"))

# Batch repair utilities (scripts/maintenance.py)
MAINTENANCE_ENABLED = os.getenv("MAINTENANCE_ENABLED", "true").lower() == "true"

# Version string
VERSION = "1.0.0"


def now() -> datetime:
    """Default clock. Every time-dependent operation accepts a replacement."""
    return datetime.now()


def as_local(value: Optional[datetime]) -> Optional[datetime]:
    """Naive local time, the one convention stored and compared by the engine.

    Aware values (e.g. "...Z" timestamps from browsers) are converted; naive
    values are taken to be local already.
    """
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def suspension_days_for(outcome: str) -> int:
    """Suspension window for a lost/damaged outcome."""
    if outcome == "lost":
        return LOST_SUSPENSION_DAYS
    if outcome == "damaged":
        return DAMAGED_SUSPENSION_DAYS
    raise ValueError(f"No suspension window for outcome: {outcome}")


def validate_config():
    """Validate policy configuration and return list of issues."""
    issues = []

    if not 0.0 <= BASE_TRUST_SCORE <= MAX_TRUST_SCORE:
        issues.append(f"BASE_TRUST_SCORE must be within 0-{MAX_TRUST_SCORE}, got {BASE_TRUST_SCORE}")

    if not 0.0 <= LOSS_PENALTY_FACTOR <= 1.0:
        issues.append(f"LOSS_PENALTY_FACTOR must be within 0-1, got {LOSS_PENALTY_FACTOR}")

    if LOST_SUSPENSION_DAYS < 1:
        issues.append(f"LOST_SUSPENSION_DAYS must be >= 1, got {LOST_SUSPENSION_DAYS}")

    if DAMAGED_SUSPENSION_DAYS < 1:
        issues.append(f"DAMAGED_SUSPENSION_DAYS must be >= 1, got {DAMAGED_SUSPENSION_DAYS}")

    return issues
