"""pocketauth entry point.

Changes:
  - 2026-02-20: Added ``purge`` for cron-driven cleanup of expired credentials.
  - 2026-02-20: Added ``create-user`` for provisioning accounts from the shell.
"""

import argparse
import getpass
import logging
from importlib.metadata import version as get_version

from pocketauth.config import Settings, get_settings
from pocketauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def run_create_user(settings: Settings, args: argparse.Namespace) -> int:
    from pocketauth.oauth2.passwords import PasswordVerifier
    from pocketauth.oauth2.provisioning import create_user, open_store

    password = args.password or getpass.getpass("Password: ")
    if not password:
        logger.error("A password is required")
        return 1

    store = open_store(settings.database_url)
    passwords = PasswordVerifier(pepper=settings.password_pepper.get_secret_value())
    try:
        user = create_user(
            store,
            passwords,
            email=args.email,
            username=args.username,
            password=password,
            country=args.country,
            is_admin=args.admin,
            is_verified=args.verified,
        )
    except ValueError as exc:
        logger.error("%s", exc)
        return 1

    print(user.id)
    return 0


def run_purge(settings: Settings) -> int:
    from pocketauth.oauth2.provisioning import open_store

    removed = open_store(settings.database_url).purge_expired()
    print(f"Removed {removed} expired credential(s)")
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="pocketauth - OAuth 2.0 / OpenID Connect authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pocketauth                                     Start the server (default)
  pocketauth serve --port 3001                   Start the server on a given port
  pocketauth create-user alice alice@example.com Create an account (prompts for password)
  pocketauth purge                               Delete expired codes and tokens
""",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {get_version('pocketauth')}",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", type=str, default=None, help="Host to bind (default: settings)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port (default: settings)")
    serve.add_argument("--dev", action="store_true", help="Development mode with auto-reload")

    user = subparsers.add_parser("create-user", help="Create a user account")
    user.add_argument("username")
    user.add_argument("email")
    user.add_argument("--password", default=None, help="Password (prompted when omitted)")
    user.add_argument("--country", default=None)
    user.add_argument("--admin", action="store_true", help="Grant the admin role")
    user.add_argument("--verified", action="store_true", help="Mark the email as verified")

    subparsers.add_parser("purge", help="Delete expired codes and tokens")

    args = parser.parse_args()
    settings = get_settings()
    setup_logging(level=settings.log_level)

    try:
        if args.command == "create-user":
            raise SystemExit(run_create_user(settings, args))
        elif args.command == "purge":
            raise SystemExit(run_purge(settings))
        else:
            from pocketauth.api.serve import run_api_server

            run_api_server(
                host=getattr(args, "host", None) or settings.web_host,
                port=getattr(args, "port", None) or settings.web_port,
                dev=getattr(args, "dev", False),
            )
    except KeyboardInterrupt:
        logger.info("pocketauth stopped.")


if __name__ == "__main__":
    main()
