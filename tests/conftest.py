"""
Pytest fixtures for the referral intake tests.

Provides a temporary SQLite database, a signed-up user, an unauthenticated
TestClient and an authenticated one, plus a helper that inserts referrals
directly so tests can control timestamps.
"""

import sqlite3
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fastapi.testclient import TestClient  # noqa: E402

import api.auth as auth_mod  # noqa: E402
from api.app import create_app  # noqa: E402
from api.database import open_db  # noqa: E402
from api.routes.metrics import metrics_cache  # noqa: E402
from utils.config import AppConfig  # noqa: E402

TEST_EMAIL = "staff@example.org"
TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """Keep PBKDF2 cheap in tests; the algorithm is unchanged."""
    monkeypatch.setattr(auth_mod, "PBKDF2_ITERATIONS", 1_000)


@pytest.fixture(autouse=True)
def fresh_metrics_cache():
    metrics_cache.clear()
    yield
    metrics_cache.clear()


@pytest.fixture()
def db_path(tmp_path) -> Path:
    return tmp_path / "referrals.sqlite"


@pytest.fixture()
def test_config(db_path) -> AppConfig:
    cfg = AppConfig()
    cfg.db_path = db_path
    cfg.log_format = "text"
    cfg.rate_limit_login = 1_000
    cfg.rate_limit_default = 10_000
    cfg.import_batch_size = 500
    cfg.trusted_proxies = set()
    return cfg


@pytest.fixture()
def db(db_path):
    """Read-write connection to the test database, schema created."""
    conn = open_db(db_path)
    yield conn
    conn.close()


@pytest.fixture()
def user_id(db) -> int:
    return auth_mod.create_user(db, TEST_EMAIL, TEST_PASSWORD)


@pytest.fixture()
def app(db_path, test_config, user_id):
    return create_app(db_path=db_path, config=test_config)


@pytest.fixture()
def client(app):
    """TestClient without credentials."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture()
def auth_client(app):
    """TestClient signed in as TEST_EMAIL."""
    c = TestClient(app, raise_server_exceptions=False)
    resp = c.post("/api/v1/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert resp.status_code == 200, resp.text
    c.headers["Authorization"] = f"Bearer {resp.json()['access_token']}"
    return c


def insert_referral(conn: sqlite3.Connection, **fields) -> int:
    """Insert a referral row directly, filling required columns with defaults."""
    row = {
        "first_name": "Test",
        "last_name": "Client",
        "lead_source": "Direct",
        "admitted": 0,
        "created_at": "2024-01-15T10:00:00",
        "created_by": TEST_EMAIL,
    }
    row.update(fields)
    if isinstance(row.get("admitted"), bool):
        row["admitted"] = int(row["admitted"])
    cols = ", ".join(row)
    placeholders = ", ".join("?" * len(row))
    with conn:
        cur = conn.execute(f"INSERT INTO referrals ({cols}) VALUES ({placeholders})", list(row.values()))
    return cur.lastrowid


@pytest.fixture()
def seed(db):
    """Factory fixture: seed(**fields) inserts one referral and returns its id."""
    def _seed(**fields):
        return insert_referral(db, **fields)
    return _seed
