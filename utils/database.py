"""Database utilities for the referral intake service.

Provides reusable functions for:
- Schema creation and connection pragmas
- Sequential batched writes with per-batch failure accounting
- Small query helpers shared by the routes and the launcher
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from utils.config import DatabaseConfig

logger = logging.getLogger("referral_intake.database")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS referrals (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name        TEXT NOT NULL,
    last_name         TEXT NOT NULL,
    lead_source       TEXT NOT NULL,
    outreach_rep      TEXT,
    referral_source   TEXT,
    referral_out      TEXT,
    insurance_company TEXT,
    program           TEXT,
    referral_sent_to  TEXT,
    admitted          INTEGER NOT NULL DEFAULT 0,
    created_at        TEXT NOT NULL,
    created_by        TEXT NOT NULL DEFAULT 'unknown',
    updated_at        TEXT,
    updated_by        TEXT
);
CREATE INDEX IF NOT EXISTS idx_referrals_created_at ON referrals(created_at);
CREATE INDEX IF NOT EXISTS idx_referrals_lead_source ON referrals(lead_source);

CREATE TABLE IF NOT EXISTS referent_contacts (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    referral_partner      TEXT NOT NULL,
    referral_rep          TEXT NOT NULL,
    referral_contact_info TEXT NOT NULL,
    referent_email        TEXT,
    created_at            TEXT NOT NULL,
    created_by            TEXT NOT NULL DEFAULT 'unknown',
    updated_at            TEXT
);

CREATE TABLE IF NOT EXISTS users (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    email         TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    password_salt TEXT NOT NULL,
    is_active     INTEGER NOT NULL DEFAULT 1,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    token_hash TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""

REFERRAL_COLUMNS = [
    "id", "first_name", "last_name", "lead_source", "outreach_rep",
    "referral_source", "referral_out", "insurance_company", "program",
    "referral_sent_to", "admitted", "created_at", "created_by",
    "updated_at", "updated_by",
]

CONTACT_COLUMNS = [
    "id", "referral_partner", "referral_rep", "referral_contact_info",
    "referent_email", "created_at", "created_by", "updated_at",
]


def init_pragmas(conn: sqlite3.Connection, config: Optional[DatabaseConfig] = None) -> None:
    """Apply the connection pragmas from *config* (default: DatabaseConfig()).

    - WAL journal when ``wal_mode`` is set, so report reads don't block intake writes
    - ``synchronous`` mode
    - ``busy_timeout_ms`` for concurrent request handlers
    - foreign keys so deleting a user drops its sessions
    """
    cfg = config or DatabaseConfig()
    if cfg.wal_mode:
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA synchronous={cfg.synchronous}")
    conn.execute(f"PRAGMA busy_timeout={int(cfg.busy_timeout_ms)}")
    conn.execute("PRAGMA foreign_keys=ON")


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes if they do not exist yet."""
    conn.executescript(SCHEMA_SQL)
    conn.commit()


@dataclass
class BatchWriteResult:
    """Outcome of a sequential batched write."""

    written: int = 0
    failed: int = 0
    failed_batches: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def batch_write(conn: sqlite3.Connection, query: str, rows: Sequence[tuple],
                batch_size: int = 500) -> BatchWriteResult:
    """Write rows in sequential batches, one transaction per batch.

    A batch that fails is rolled back on its own and counted as failed;
    batches already committed stay committed and later batches still run.
    Nothing is retried.

    Args:
        conn: SQLite connection
        query: SQL INSERT query with ? placeholders
        rows: Tuples to write
        batch_size: Rows per batch (default: 500)

    Returns:
        BatchWriteResult with written/failed row counts

    Example:
        rows = [("Ann", "Lee", "Direct"), ...]
        batch_write(conn, "INSERT INTO t (a, b, c) VALUES (?, ?, ?)", rows)
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    result = BatchWriteResult()
    for batch_no, i in enumerate(range(0, len(rows), batch_size), start=1):
        batch = rows[i:i + batch_size]
        try:
            with conn:
                conn.executemany(query, batch)
        except sqlite3.Error as exc:
            result.failed += len(batch)
            result.failed_batches.append(batch_no)
            result.errors.append(f"batch {batch_no}: {exc}")
            logger.warning("batch %d of %d rows failed: %s", batch_no, len(batch), exc)
            continue
        result.written += len(batch)
    return result


def get_table_count(conn: sqlite3.Connection, table: str) -> int:
    """Get row count for a table."""
    result = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()
    return result[0] if result else 0


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    """Check if a table exists in the database."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table,)
    )
    return cursor.fetchone() is not None


def query_to_dicts(conn: sqlite3.Connection, query: str,
                   params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    """Execute query and return results as list of dicts.

    Args:
        conn: SQLite connection (must have row_factory set)
        query: SQL query string
        params: Query parameters

    Returns:
        List of row dicts
    """
    cursor = conn.execute(query, tuple(params))
    return [dict(row) for row in cursor.fetchall()]
