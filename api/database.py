"""
Database connection management for the API.

Provides a get_db() dependency that opens a per-request SQLite connection and
closes it after the response is sent.  The database path is resolved once at
startup from the APP_DB_PATH environment variable (default: referrals.sqlite)
and can be overridden by create_app(db_path=...).

The schema is created the first time a connection to a given file is opened,
so a fresh path works without running ``main.py init-db`` first.
"""

import logging
import os
import sqlite3
import threading
from collections.abc import Generator
from pathlib import Path

from fastapi import HTTPException

from utils.database import create_schema, init_pragmas

logger = logging.getLogger("referral_intake.database")

_DB_PATH: Path = Path(os.getenv("APP_DB_PATH", "referrals.sqlite"))

_schema_ready: set[str] = set()
_schema_lock = threading.Lock()


def get_db_path() -> Path:
    """Return the configured database path."""
    return _DB_PATH


def set_db_path(db_path: Path) -> None:
    """Point get_db() at a different database file."""
    global _DB_PATH
    _DB_PATH = Path(db_path)


def _make_conn(db_path: Path) -> sqlite3.Connection:
    """Open a single read-write SQLite connection with standard pragmas."""
    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    init_pragmas(conn)
    return conn


def ensure_schema(conn: sqlite3.Connection, db_path: Path) -> None:
    """Create tables on first use of *db_path* in this process."""
    key = str(Path(db_path).resolve())
    if key in _schema_ready:
        return
    with _schema_lock:
        if key not in _schema_ready:
            create_schema(conn)
            _schema_ready.add(key)
            logger.info("schema ready at %s", db_path)


def open_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Open a connection to *db_path* (default: configured path) with schema."""
    path = Path(db_path) if db_path is not None else _DB_PATH
    conn = _make_conn(path)
    try:
        ensure_schema(conn, path)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def get_db() -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency: yield a SQLite connection, close on exit.

    Raises HTTP 503 with a friendly message if the database directory is
    missing or the file cannot be opened, instead of a cryptic SQLite error.

    Usage in a route::

        from api.database import get_db
        from fastapi import Depends

        @router.get("/example")
        def example(conn=Depends(get_db)):
            ...
    """
    db_path = _DB_PATH
    if not db_path.parent.exists():
        raise HTTPException(
            status_code=503,
            detail=(
                f"Database directory '{db_path.parent}' does not exist. "
                "Run 'python main.py init-db' to create the database."
            ),
        )
    try:
        conn = open_db(db_path)
    except sqlite3.Error as exc:
        logger.error("cannot open database %s: %s", db_path, exc)
        raise HTTPException(
            status_code=503,
            detail=f"Database at '{db_path}' is unavailable.",
        ) from exc
    try:
        yield conn
    finally:
        conn.close()
