"""SQLite database connection and schema management."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/smartpromptiq.db")

# Current database (module-level, set by init_db)
_db_path: Path | None = None


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to db/smartpromptiq.db
    """
    global _db_path
    _db_path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH

    _db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))


def get_db_path() -> Path:
    return _db_path or DEFAULT_DB_PATH


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Commits on success, rolls back on any exception.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db() as conn:
            rows = conn.execute("SELECT * FROM courses").fetchall()
    """
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- Accounts, subscription state and token balance
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            first_name TEXT,
            last_name TEXT,
            role TEXT NOT NULL DEFAULT 'user' CHECK(role IN ('user', 'admin')),
            subscription_tier TEXT NOT NULL DEFAULT 'free',
            subscription_status TEXT NOT NULL DEFAULT 'active',
            is_active INTEGER NOT NULL DEFAULT 1,
            token_balance INTEGER NOT NULL DEFAULT 0,
            tokens_used INTEGER NOT NULL DEFAULT 0,
            tokens_purchased INTEGER NOT NULL DEFAULT 0,
            monthly_tokens_used INTEGER NOT NULL DEFAULT 0,
            monthly_reset_date TEXT,
            last_token_purchase TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Token ledger: negative rows consume, positive rows credit
        CREATE TABLE IF NOT EXISTS token_transactions (
            transaction_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            type TEXT NOT NULL CHECK(type IN ('usage', 'purchase', 'bonus', 'rollover', 'refund', 'expiration')),
            tokens INTEGER NOT NULL,
            balance_before INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            prompt_complexity TEXT,
            model TEXT,
            category TEXT,
            cost_in_cents INTEGER,
            package_type TEXT,
            payment_reference TEXT,
            expires_at TEXT,
            is_expired INTEGER NOT NULL DEFAULT 0,
            description TEXT,
            metadata TEXT DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS courses (
            course_id TEXT PRIMARY KEY,
            slug TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            category TEXT NOT NULL,
            difficulty TEXT NOT NULL DEFAULT 'beginner',
            duration INTEGER NOT NULL DEFAULT 0,
            access_tier TEXT NOT NULL DEFAULT 'free'
                CHECK(access_tier IN ('free', 'smartpromptiq_included', 'pro', 'certification')),
            price_in_cents INTEGER NOT NULL DEFAULT 0,
            is_published INTEGER NOT NULL DEFAULT 0,
            order_index INTEGER NOT NULL DEFAULT 0,
            instructor TEXT,
            tags TEXT NOT NULL DEFAULT '[]',
            average_rating REAL NOT NULL DEFAULT 0,
            review_count INTEGER NOT NULL DEFAULT 0,
            enrollment_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS lessons (
            lesson_id TEXT PRIMARY KEY,
            course_id TEXT NOT NULL REFERENCES courses(course_id) ON DELETE CASCADE,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            content TEXT NOT NULL DEFAULT '',
            duration INTEGER NOT NULL DEFAULT 0,
            order_index INTEGER NOT NULL DEFAULT 0,
            is_free INTEGER NOT NULL DEFAULT 0,
            is_published INTEGER NOT NULL DEFAULT 0,
            quiz TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS enrollments (
            enrollment_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            course_id TEXT NOT NULL REFERENCES courses(course_id) ON DELETE CASCADE,
            enrollment_type TEXT NOT NULL DEFAULT 'free',
            status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'completed')),
            progress INTEGER NOT NULL DEFAULT 0,
            enrolled_at TEXT NOT NULL DEFAULT (datetime('now')),
            last_accessed_at TEXT,
            completed_at TEXT,
            UNIQUE(user_id, course_id)
        );

        CREATE TABLE IF NOT EXISTS lesson_progress (
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            lesson_id TEXT NOT NULL REFERENCES lessons(lesson_id) ON DELETE CASCADE,
            completed INTEGER NOT NULL DEFAULT 0,
            time_spent INTEGER NOT NULL DEFAULT 0,
            quiz_score REAL,
            rating INTEGER CHECK(rating IS NULL OR rating BETWEEN 1 AND 5),
            feedback TEXT,
            completed_at TEXT,
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (user_id, lesson_id)
        );

        CREATE TABLE IF NOT EXISTS certificates (
            certificate_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            course_id TEXT NOT NULL REFERENCES courses(course_id) ON DELETE CASCADE,
            course_title TEXT NOT NULL,
            student_name TEXT NOT NULL,
            issued_at TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE(user_id, course_id)
        );

        -- Local stand-in for hosted payment sessions
        CREATE TABLE IF NOT EXISTS checkout_sessions (
            session_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
            package_key TEXT NOT NULL,
            tokens INTEGER NOT NULL,
            price_in_cents INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending', 'completed')),
            transaction_id INTEGER,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            completed_at TEXT
        );

        CREATE TABLE IF NOT EXISTS generations (
            generation_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT REFERENCES users(user_id) ON DELETE SET NULL,
            kind TEXT NOT NULL DEFAULT 'generate' CHECK(kind IN ('generate', 'refine')),
            category TEXT NOT NULL,
            complexity TEXT NOT NULL,
            tokens_used INTEGER NOT NULL DEFAULT 0,
            content TEXT NOT NULL,
            model TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Visitors are not users, so user_id has no foreign key
        CREATE TABLE IF NOT EXISTS ab_test_events (
            event_id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            test_id TEXT NOT NULL,
            variant_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            event_data TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_transactions_user ON token_transactions(user_id);
        CREATE INDEX IF NOT EXISTS idx_transactions_expiry ON token_transactions(expires_at, is_expired);
        CREATE INDEX IF NOT EXISTS idx_lessons_course ON lessons(course_id, order_index);
        CREATE INDEX IF NOT EXISTS idx_enrollments_user ON enrollments(user_id);
        CREATE INDEX IF NOT EXISTS idx_generations_user ON generations(user_id);
        CREATE INDEX IF NOT EXISTS idx_ab_events_test ON ab_test_events(test_id, variant_id);
        """
    )


def to_db_timestamp(value: datetime | None = None) -> str:
    """Format a datetime the way SQLite's datetime('now') does (UTC)."""
    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")
