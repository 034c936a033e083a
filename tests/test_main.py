"""
Tests for main.py - command-line entry point.
"""
import sqlite3
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import main
from api.auth import authenticate


class TestParser:
    def test_serve_defaults(self):
        args = main.build_parser().parse_args(["serve"])
        assert args.func is main.cmd_serve
        assert args.reload is False
        assert args.db is None

    def test_create_user_args(self, tmp_path):
        args = main.build_parser().parse_args(["create-user", "a@b.org", "--db", str(tmp_path / "x.sqlite")])
        assert args.email == "a@b.org"
        assert args.db == tmp_path / "x.sqlite"


def test_no_command_means_serve(monkeypatch, tmp_path):
    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kw: calls.append((app, kw)))
    monkeypatch.setenv("APP_DB_PATH", str(tmp_path / "r.sqlite"))
    assert main.main(["--port", "9001"]) == 0
    app, kw = calls[0]
    assert app == "api.app:create_app"
    assert kw["factory"] is True
    assert kw["port"] == 9001


def test_init_db(tmp_path, capsys):
    db_path = tmp_path / "data" / "referrals.sqlite"
    assert main.main(["init-db", "--db", str(db_path)]) == 0
    assert db_path.exists()
    conn = sqlite3.connect(str(db_path))
    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert {"referrals", "referent_contacts", "users", "sessions"} <= tables
    assert "0 referrals" in capsys.readouterr().out


class TestCreateUser:
    def test_creates_account(self, tmp_path, monkeypatch):
        db_path = tmp_path / "referrals.sqlite"
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": "long-password")
        assert main.main(["create-user", "New@Example.org", "--db", str(db_path)]) == 0
        conn = sqlite3.connect(str(db_path))
        conn.row_factory = sqlite3.Row
        try:
            assert authenticate(conn, "new@example.org", "long-password") is not None
        finally:
            conn.close()

    def test_mismatched_passwords(self, tmp_path, monkeypatch, capsys):
        answers = iter(["long-password", "other-password"])
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(answers))
        assert main.main(["create-user", "a@b.org", "--db", str(tmp_path / "r.sqlite")]) == 1
        assert "do not match" in capsys.readouterr().err

    def test_short_password(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": "short")
        assert main.main(["create-user", "a@b.org", "--db", str(tmp_path / "r.sqlite")]) == 1
        assert "at least 8" in capsys.readouterr().err
