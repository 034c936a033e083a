"""
Tests for api/auth.py and api/routes/auth.py

Password hashing, session tokens, the bearer-token gate on /api/v1 routes,
and the login/logout/me endpoints.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from api.auth import (
    authenticate,
    bootstrap_admin,
    create_session,
    create_user,
    delete_session,
    hash_password,
    token_hash,
    user_for_token,
    verify_password,
)
from conftest import TEST_EMAIL, TEST_PASSWORD


# ── Helpers ──────────────────────────────────────────────────────────────────

class TestPasswordHashing:
    def test_verify_roundtrip(self):
        pw_hash, salt = hash_password("open sesame")
        assert verify_password("open sesame", pw_hash, salt)
        assert not verify_password("open sesam", pw_hash, salt)

    def test_fresh_salt_each_time(self):
        assert hash_password("same")[1] != hash_password("same")[1]


class TestUsers:
    def test_email_normalized(self, db):
        uid = create_user(db, "  Intake@Example.ORG ", "longenough")
        assert authenticate(db, "intake@example.org", "longenough")["id"] == uid

    def test_duplicate_rejected(self, db, user_id):
        with pytest.raises(ValueError, match="already exists"):
            create_user(db, TEST_EMAIL.upper(), "anotherpass")

    def test_short_password_rejected(self, db):
        with pytest.raises(ValueError, match="at least 8"):
            create_user(db, "a@b.org", "short")

    def test_bad_email_rejected(self, db):
        with pytest.raises(ValueError):
            create_user(db, "not-an-email", "longenough")

    def test_wrong_password(self, db, user_id):
        assert authenticate(db, TEST_EMAIL, "wrong-password") is None

    def test_inactive_user_cannot_sign_in(self, db, user_id):
        with db:
            db.execute("UPDATE users SET is_active = 0 WHERE id = ?", (user_id,))
        assert authenticate(db, TEST_EMAIL, TEST_PASSWORD) is None


class TestSessions:
    def test_only_hash_stored(self, db, user_id):
        token, _ = create_session(db, user_id)
        stored = [r[0] for r in db.execute("SELECT token_hash FROM sessions")]
        assert stored == [token_hash(token)]
        assert token not in stored

    def test_lookup_and_delete(self, db, user_id):
        token, _ = create_session(db, user_id)
        assert user_for_token(db, token) == {"id": user_id, "email": TEST_EMAIL}
        delete_session(db, token)
        assert user_for_token(db, token) is None
        # deleting again is harmless
        delete_session(db, token)

    def test_expired_session_rejected(self, db, user_id):
        token, _ = create_session(db, user_id, ttl_hours=-1)
        assert user_for_token(db, token) is None

    def test_expired_sessions_purged_on_login(self, db, user_id):
        create_session(db, user_id, ttl_hours=-1)
        create_session(db, user_id)
        assert db.execute("SELECT COUNT(*) FROM sessions").fetchone()[0] == 1


class TestBootstrapAdmin:
    def test_creates_once(self, db):
        assert bootstrap_admin(db, "admin@example.org", "admin-password") is True
        assert bootstrap_admin(db, "admin@example.org", "admin-password") is False

    def test_skipped_without_credentials(self, db):
        assert bootstrap_admin(db, "", "") is False
        assert bootstrap_admin(db, "admin@example.org", "") is False


# ── Endpoints ────────────────────────────────────────────────────────────────

class TestLogin:
    def test_login_returns_token(self, client):
        resp = client.post("/api/v1/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["expires_at"]

    def test_bad_password(self, client):
        resp = client.post("/api/v1/auth/login", json={"email": TEST_EMAIL, "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid email or password"

    def test_unknown_user_same_message(self, client):
        resp = client.post("/api/v1/auth/login", json={"email": "who@example.org", "password": "whatever1"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid email or password"

    def test_missing_fields(self, client):
        resp = client.post("/api/v1/auth/login", json={"email": TEST_EMAIL})
        assert resp.status_code == 422


class TestGate:
    @pytest.mark.parametrize("method,path", [
        ("get", "/api/v1/referrals"),
        ("post", "/api/v1/referrals"),
        ("get", "/api/v1/metrics/summary"),
        ("get", "/api/v1/download"),
        ("get", "/api/v1/contacts"),
        ("get", "/api/v1/reference/options"),
        ("post", "/api/v1/referrals/import"),
        ("get", "/api/v1/auth/me"),
    ])
    def test_requires_token(self, client, method, path):
        resp = getattr(client, method)(path)
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert resp.json()["error"] == "Unauthorized"

    def test_garbage_token(self, client):
        resp = client.get("/api/v1/referrals", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid or expired session"

    def test_me(self, auth_client, user_id):
        resp = auth_client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json() == {"id": user_id, "email": TEST_EMAIL}


class TestLogout:
    def test_logout_ends_session(self, auth_client):
        assert auth_client.post("/api/v1/auth/logout").status_code == 204
        assert auth_client.get("/api/v1/auth/me").status_code == 401

    def test_logout_is_idempotent(self, auth_client):
        assert auth_client.post("/api/v1/auth/logout").status_code == 204
        assert auth_client.post("/api/v1/auth/logout").status_code == 204

    def test_logout_without_token(self, client):
        assert client.post("/api/v1/auth/logout").status_code == 204
