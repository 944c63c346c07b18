"""
geopulse_sdk - Run as module

Usage: python -m geopulse_sdk [login|logout|upload|status|download] ...
"""

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from geopulse_sdk.core.connection import ConnectionContext
from geopulse_sdk.core.errors import ApiError, ErrorKind
from geopulse_sdk.upload import CallbackObserver, UploadEndpoints

DEFAULT_SESSION_FILE = Path.home() / ".geopulse" / "session.json"

EXIT_CODES = {
    ErrorKind.AUTH_EXPIRED: 3,
    ErrorKind.TRANSIENT_NETWORK: 4,
    ErrorKind.SERVER_REJECTED: 5,
    ErrorKind.PROTOCOL_VIOLATION: 6,
    ErrorKind.CANCELLED: 130,
}


def _load_env() -> None:
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)


def _parse_options(pairs):
    options = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Invalid --option {pair!r}, expected KEY=VALUE")
        try:
            options[key] = json.loads(value)
        except ValueError:
            options[key] = value
    return options


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="geopulse", description="GeoPulse API command line client")
    parser.add_argument("--base-url", help="API root (GEOPULSE_BASE_URL)")
    parser.add_argument("--session-file", help="Session file (GEOPULSE_SESSION_FILE)")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("GEOPULSE_LOG_LEVEL", "WARNING"),
        help="Logging level (GEOPULSE_LOG_LEVEL)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Sign in and persist the session")
    login.add_argument("--email", default=os.environ.get("GEOPULSE_EMAIL"))

    sub.add_parser("logout", help="Sign out and forget the session")

    upload = sub.add_parser("upload", help="Upload a file for import")
    upload.add_argument("file", type=Path)
    upload.add_argument("--format", required=True, dest="import_format")
    upload.add_argument("--option", action="append", metavar="KEY=VALUE")

    status = sub.add_parser("status", help="Show a chunked upload's status")
    status.add_argument("upload_id")

    download = sub.add_parser("download", help="Download a file from an API path")
    download.add_argument("endpoint")
    download.add_argument("-o", "--output", type=Path, default=Path.cwd())
    return parser


async def run(args) -> int:
    session_file = args.session_file or os.environ.get("GEOPULSE_SESSION_FILE") or DEFAULT_SESSION_FILE
    conn = ConnectionContext(base_url=args.base_url, session_file=session_file)
    try:
        client = conn.client
        if args.command == "login":
            email = args.email or input("Email: ")
            password = os.environ.get("GEOPULSE_PASSWORD") or getpass.getpass("Password: ")
            result = await client.login(email, password)
            print(f"Logged in as {result.email or result.user_id} ({result.transport_mode.value} mode)")
        elif args.command == "logout":
            await client.logout()
            print("Logged out")
        elif args.command == "upload":
            observer = CallbackObserver(
                on_progress=lambda p: print(f"\r{p:6.2f}%", end="", file=sys.stderr, flush=True),
            )
            job = await conn.uploader.upload(
                args.file, args.import_format, _parse_options(args.option), observer=observer
            )
            print(file=sys.stderr)
            print(json.dumps(job, indent=2, default=str))
        elif args.command == "status":
            status = await UploadEndpoints(client).status(args.upload_id)
            print(json.dumps(status.model_dump(by_alias=True), indent=2, default=str))
        elif args.command == "download":
            result = await client.download(args.endpoint, args.output)
            print(result.path)
        return 0
    except ApiError as e:
        print(f"error ({e.kind.value}): {e}", file=sys.stderr)
        return EXIT_CODES.get(e.kind, 1)
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    finally:
        await conn.close()


def main(argv=None) -> int:
    """Run the command line client."""
    _load_env()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
