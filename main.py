#!/usr/bin/env python3
"""
Referral Intake: launcher and admin commands.

Usage:
    python main.py                          # serve on http://localhost:8000
    python main.py serve --port 9000        # serve on http://localhost:9000
    python main.py serve --host 127.0.0.1   # bind to localhost only
    python main.py serve --db /path/to/referrals.sqlite
    python main.py serve --reload           # auto-reload on code changes
    python main.py create-user staff@example.org
    python main.py init-db --db /path/to/referrals.sqlite
"""

from __future__ import annotations

import argparse
import getpass
import os
import sys
from pathlib import Path

from api.database import open_db
from utils.config import AppConfig
from utils.database import get_table_count
from utils.formatting import format_count


def _db_path(args: argparse.Namespace) -> Path:
    if args.db is not None:
        return args.db
    return AppConfig.from_env().db_path


def _open(db_path: Path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return open_db(db_path)


def cmd_serve(args: argparse.Namespace) -> int:
    # Set DB path env var if provided via CLI; create_app reads it
    if args.db is not None:
        os.environ["APP_DB_PATH"] = str(args.db)

    import uvicorn

    host = "localhost" if args.host == "0.0.0.0" else args.host
    print(f"Starting Referral Intake API at http://{host}:{args.port}")
    print(f"Database: {_db_path(args)}")
    print()

    uvicorn.run(
        "api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    db_path = _db_path(args)
    conn = _open(db_path)
    try:
        count = get_table_count(conn, "referrals")
    finally:
        conn.close()
    print(f"Schema ready at {db_path} ({format_count(count)} referrals)")
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    from api.auth import create_user

    password = getpass.getpass(f"Password for {args.email}: ")
    confirm = getpass.getpass("Repeat password: ")
    if password != confirm:
        print("Error: passwords do not match", file=sys.stderr)
        return 1

    db_path = _db_path(args)
    conn = _open(db_path)
    try:
        user_id = create_user(conn, args.email, password)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        conn.close()
    print(f"Created user {args.email} (id {user_id}) in {db_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the Referral Intake API or manage its database.",
    )
    sub = parser.add_subparsers(dest="command")

    db_help = "Path to SQLite database (default: referrals.sqlite or APP_DB_PATH env var)"

    serve = sub.add_parser("serve", help="Run the API server (default)")
    serve.add_argument(
        "--host", default=os.getenv("APP_HOST", "0.0.0.0"),
        help="Bind address (default: 0.0.0.0 or APP_HOST env var)",
    )
    serve.add_argument(
        "--port", type=int, default=int(os.getenv("APP_PORT", "8000")),
        help="Port to listen on (default: 8000 or APP_PORT env var)",
    )
    serve.add_argument("--db", type=Path, default=None, help=db_help)
    serve.add_argument(
        "--reload", action="store_true",
        help="Enable auto-reload on file changes (development mode)",
    )
    serve.set_defaults(func=cmd_serve)

    init_db = sub.add_parser("init-db", help="Create the database schema")
    init_db.add_argument("--db", type=Path, default=None, help=db_help)
    init_db.set_defaults(func=cmd_init_db)

    create = sub.add_parser("create-user", help="Create a sign-in account")
    create.add_argument("email", help="Account email")
    create.add_argument("--db", type=Path, default=None, help=db_help)
    create.set_defaults(func=cmd_create_user)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (argv[0].startswith("-") and argv[0] not in ("-h", "--help")):
        argv.insert(0, "serve")
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
