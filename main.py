#!/usr/bin/env python3
"""
authgate -- Email/password authentication service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 9000 --reload
  python main.py set-admin alice@example.com
  python main.py set-admin alice@example.com --revoke

Environment variables (or .env):
  SECRET_KEY     HS256 signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL (default: sqlite:///authgate.db)
  HOST / PORT    Bind address for `serve` (default: 127.0.0.1:8000)
"""

import argparse
import sys

from core.config import get_settings
from core.errors import AppError


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "asgi:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def _set_admin(args: argparse.Namespace) -> int:
    """Grant or revoke the admin flag. There is no HTTP route for this on purpose."""
    import logging

    from api.main import build_service
    from auth.store import AuthStore
    from core.background import BackgroundWorker

    settings = get_settings()
    store = AuthStore(
        db_url=settings.database_url,
        timeout_seconds=settings.db_timeout_seconds,
        logger=logging.getLogger("authgate.store"),
    )
    worker = BackgroundWorker(max_workers=1, logger=logging.getLogger("authgate.background"))
    try:
        service = build_service(store, worker)
        user = service.set_admin(args.email, not args.revoke)
    except AppError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        worker.shutdown(wait=True)
        store.close()

    state = "granted to" if user.is_admin else "revoked from"
    print(f"  Admin {state} {user.email} (id={user.id}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Registration, login and refresh-token session service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve
  python main.py serve --port 9000 --reload
  python main.py set-admin alice@example.com
  python main.py set-admin alice@example.com --revoke
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST setting)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: PORT setting)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(handler=_serve)

    set_admin = sub.add_parser("set-admin", help="Grant or revoke the admin flag for an activated user")
    set_admin.add_argument("email", help="Email of an existing user")
    set_admin.add_argument("--revoke", action="store_true", help="Remove the admin flag instead of granting it")
    set_admin.set_defaults(handler=_set_admin)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
