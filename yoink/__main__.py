import argparse
import asyncio
import logging
import os
import secrets

import uvicorn

from yoink.config import DB_URL_DEFAULT, YoinkConfig
from yoink.errors import YoinkError

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 4402

EPILOG = """\
Examples:
  yoink serve --rp-id example.com --rp-name "Example" --origin https://app.example.com
  yoink signup alice@example.com
"""

logger = logging.getLogger("yoink")


def add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--db",
        default=os.environ.get("YOINK_DB", DB_URL_DEFAULT),
        help=f"SQLAlchemy database URL (env YOINK_DB, default: {DB_URL_DEFAULT})",
    )
    p.add_argument(
        "--rp-id", default="localhost", help="Relying Party ID (default: localhost)"
    )
    p.add_argument("--rp-name", help="Relying Party name (default: same as rp-id)")
    p.add_argument(
        "--origin",
        action="append",
        dest="origins",
        metavar="URL",
        help="Allowed WebAuthn origin. May be specified multiple times.",
    )


def build_config(args: argparse.Namespace) -> YoinkConfig:
    secret = os.environ.get("YOINK_CHALLENGE_SECRET")
    if not secret:
        logger.warning(
            "YOINK_CHALLENGE_SECRET not set, using a random secret for this run"
        )
        secret = secrets.token_urlsafe(48)
    origins = [o.rstrip("/") for o in args.origins or []]
    try:
        return YoinkConfig(
            rp_id=args.rp_id,
            rp_name=args.rp_name or None,
            origins=origins or None,
            challenge_secret=secret,
            db_url=args.db,
        )
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}")


async def _signup(config: YoinkConfig, email: str) -> None:
    from yoink import globals

    await globals.init(config)
    result = await globals.memberships.instance.signup(email)
    logger.info(
        "Created user %s (%s) with workspace %s",
        result.user.email,
        result.user.id,
        result.organization.id,
    )


def main():
    # Configure logging to remove the "ERROR:root:" prefix
    logging.basicConfig(level=logging.INFO, format="%(message)s", force=True)

    parser = argparse.ArgumentParser(
        prog="yoink",
        description="Yoink capture inbox server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default=DEFAULT_HOST)
    serve.add_argument("--port", type=int, default=DEFAULT_PORT)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")
    add_common_options(serve)

    signup = sub.add_parser("signup", help="Create a user and personal workspace")
    signup.add_argument("email")
    add_common_options(signup)

    args = parser.parse_args()
    config = build_config(args)

    if args.command == "signup":
        try:
            asyncio.run(_signup(config, args.email))
        except YoinkError as e:
            raise SystemExit(f"Signup failed: {e}")
        return

    # Export configuration via single JSON env variable for worker processes
    os.environ["YOINK_CONFIG"] = config.to_json()

    from yoink.fastapi.logging import configure_access_logging

    configure_access_logging()
    uvicorn.run(
        "yoink.fastapi.mainapp:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        access_log=False,
    )


if __name__ == "__main__":
    main()
