#!/usr/bin/env python3
"""
TenantAuth -- operator command line.

Usage:
  python main.py create-user --email admin@example.com --role admin
  python main.py create-user --email a@b.com --password Abcdef12 --username alice
  python main.py purge

Commands:
  create-user   Create an account directly in the database. This is how the
                first admin is bootstrapped; public signup always yields the
                User role. Prompts for the password when --password is omitted.
  purge         Delete expired sessions and spent or expired reset tokens.
                Reads filter expired rows anyway; this only reclaims space.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: sqlite:///tenantauth.db)
  SECRET_KEY    Required unless DEBUG=true. See core/config.py.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import PasswordHasher
from auth.sessions import SessionStore
from auth.store import AuthStore
from auth.tokens import TokenService
from auth.validators import normalize_email, validate_email, validate_password, validate_username
from core.clock import system_clock
from core.config import Settings, get_settings


def _hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher(
        time_cost=settings.hash_time_cost,
        memory_cost=settings.hash_memory_cost,
        parallelism=settings.hash_parallelism,
    )


def create_user(
    store: AuthStore,
    hasher: PasswordHasher,
    email: str,
    password: str,
    role: Role = Role.user,
    username: Optional[str] = None,
) -> Optional[User]:
    """Validate and insert one account. Prints the reason and returns None on failure."""
    for error in (
        validate_email(email),
        validate_username(username) if username is not None else None,
        validate_password(password),
    ):
        if error:
            print(f"  [!] {error}")
            return None
    try:
        return store.create_user(
            User(
                email=normalize_email(email),
                username=username.strip() if username else None,
                password_hash=hasher.hash(password),
                role=role,
            )
        )
    except IntegrityError:
        print(f"  [!] A user with email '{normalize_email(email)}' already exists.")
        return None


def purge(store: AuthStore, settings: Settings) -> tuple[int, int]:
    """Remove expired sessions and reset tokens. Returns (sessions, resets) removed."""
    tokens = TokenService(
        settings.secret_key,
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
    )
    sessions = SessionStore(store, tokens, clock=system_clock).purge_expired()
    resets = store.purge_expired_resets(system_clock())
    return sessions, resets


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tenantauth",
        description="Operator commands for the TenantAuth account database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email admin@example.com --role admin
  python main.py purge
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = commands.add_parser("create-user", help="Create an account (any role)")
    create.add_argument("--email", required=True, help="Login email; stored lowercased")
    create.add_argument("--password", help="Initial password (prompted when omitted)")
    create.add_argument("--username", help="Optional display name, 3-30 chars [A-Za-z0-9_-]")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.user.value,
        help="Role to assign (default: user)",
    )

    commands.add_parser("purge", help="Delete expired sessions and reset tokens")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    settings = get_settings()
    store = AuthStore(db_url=settings.database_url)
    try:
        if args.command == "create-user":
            password = args.password
            if password is None:
                password = getpass.getpass("Password: ")
                if password != getpass.getpass("Confirm password: "):
                    print("  [!] Passwords do not match")
                    return 1
            user = create_user(store, _hasher(settings), args.email, password, Role(args.role), args.username)
            if user is None:
                return 1
            print(f"Created {user.role.value} {user.email} (id {user.id})")
            return 0

        sessions, resets = purge(store, settings)
        print(f"Purged {sessions} expired session(s) and {resets} reset token(s).")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
