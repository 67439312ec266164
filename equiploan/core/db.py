"""
SQLite storage for students, equipment, loans and their audit trails.
Single local writer; timestamps are stored as ISO-8601 text.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from . import config

REQUIRED_TABLES = [
    'students',
    'equipment',
    'loans',
    'blacklist_entries',
    'trust_events',
    'activity_log',
]


def _connect() -> sqlite3.Connection:
    config.ensure_db_directory()
    conn = sqlite3.connect(config.DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = _connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction() -> Generator[sqlite3.Connection, None, None]:
    """Connection whose writes are committed together or rolled back together."""
    conn = _connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS students (
                id TEXT PRIMARY KEY,
                student_id TEXT NOT NULL,
                full_name TEXT NOT NULL,
                year_group TEXT,
                class_name TEXT,
                house TEXT,
                email TEXT,
                trust_score REAL NOT NULL DEFAULT 50.0,
                trust_score_raw REAL NOT NULL DEFAULT 50.0,  -- unrounded cached fold of trust_events
                is_blacklisted BOOLEAN NOT NULL DEFAULT FALSE,
                blacklist_end_date TEXT,
                blacklist_reason TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS equipment (
                id TEXT PRIMARY KEY,
                item_id TEXT NOT NULL,
                name TEXT NOT NULL,
                category TEXT,
                location TEXT,
                status TEXT NOT NULL DEFAULT 'available',
                condition_notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                student_id TEXT NOT NULL,
                equipment_id TEXT NOT NULL,
                borrowed_by_user_id TEXT,
                borrowed_at TEXT NOT NULL,
                due_at TEXT,
                returned_at TEXT,
                is_overdue BOOLEAN NOT NULL DEFAULT FALSE,
                status TEXT NOT NULL DEFAULT 'active',
                outcome TEXT,     -- normal | lost | damaged, set once at close
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS blacklist_entries (
                id TEXT PRIMARY KEY,
                student_id TEXT NOT NULL,
                blacklisted_by_user_id TEXT,
                start_date TEXT NOT NULL,
                end_date TEXT NOT NULL,
                reason TEXT NOT NULL,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS trust_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                student_id TEXT NOT NULL,
                loan_id TEXT,
                verdict TEXT NOT NULL,  -- on_time | late | penalty
                score_before REAL NOT NULL,
                score_after REAL NOT NULL,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS activity_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT,
                action TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT,
                details TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_loans_student ON loans(student_id, returned_at)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_loans_equipment ON loans(equipment_id, returned_at)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_blacklist_student ON blacklist_entries(student_id, start_date DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_trust_events_student ON trust_events(student_id, id)')

        conn.commit()


def reset_db():
    """Drop every engine table and recreate the schema. Used by tests and restores."""
    with get_db() as conn:
        for table in REQUIRED_TABLES:
            conn.execute(f"DROP TABLE IF EXISTS {table}")
        conn.commit()
    init_db()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
