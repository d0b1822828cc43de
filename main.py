#!/usr/bin/env python3
"""
Cryptify -- authentication and balance API server.

Usage:
  python main.py
  python main.py --port 8080
  python main.py --host 127.0.0.1 --reload

Environment variables (see core/config.py for the full list):
  DATABASE_URL or DATABASE_HOST / DATABASE_PORT / DATABASE /
  DATABASE_USER / DATABASE_PASSWORD     Database connection (required)
  JWT_SECRET                            Session token signing key, >= 32 chars (required)
  JWT_EXPIRES_IN                        Session lifetime, e.g. 7d (default) or 12h
  GOOGLE_CLIENT_ID                      Google OAuth client id for sign-in (required)
  SERVER_PORT                           Listen port (default 3450)
"""

import argparse
import sys

import uvicorn
from pydantic import ValidationError

from core.config import get_settings


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="cryptify",
        description="Run the Cryptify authentication API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  SERVER_PORT=8080 python main.py
  python main.py --host 127.0.0.1 --port 8080 --reload
        """,
    )
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind (default: 0.0.0.0).")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (default: SERVER_PORT or 3450).")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development only).")
    args = parser.parse_args()

    # Validate configuration before uvicorn starts so a bad environment exits
    # with one clear message instead of a lifespan traceback.
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"  [!] Invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(1)

    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port or settings.server_port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
