"""Command-line helpers for administrative workflows."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from typing import Any, Sequence

from motor.motor_asyncio import AsyncIOMotorClient

from campus_helpdesk.services.auth.gate import ROLES
from campus_helpdesk.services.auth.service import AuthService
from campus_helpdesk.services.document_store import HelpdeskDocumentStore
from campus_helpdesk.settings import settings
from campus_helpdesk.validation.fields import validate_password_strength, validate_username


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="campus-helpdesk",
        description="Administrative commands for the campus helpdesk",
    )
    subparsers = parser.add_subparsers(dest="command")

    create_parser = subparsers.add_parser(
        "createadmin",
        help="Create an active administrator account",
    )
    create_parser.add_argument("--username", required=True, help="Username for the administrator")
    create_parser.add_argument("--email", required=True, help="Email address for the administrator")
    create_parser.add_argument("--first-name", required=True, help="First name")
    create_parser.add_argument("--last-name", required=True, help="Last name")
    create_parser.add_argument(
        "--password",
        help="Password for the administrator. If omitted a prompt will be shown.",
    )
    create_parser.add_argument(
        "--department",
        default="IT Support",
        help="Department, defaults to IT Support",
    )
    create_parser.add_argument(
        "--no-input",
        action="store_true",
        help="Fail instead of prompting for missing values",
    )
    create_parser.set_defaults(handler=_handle_createadmin)

    return parser


def _password_problems(password: str) -> list[str]:
    return validate_password_strength(password).errors


def _prompt_for_password(no_input: bool) -> str:
    if no_input:
        raise SystemExit("--password is required when --no-input is supplied")

    while True:
        first = getpass.getpass("Password: ")
        problems = _password_problems(first)
        if problems:
            print("\n".join(problems), file=sys.stderr)
            continue
        confirm = getpass.getpass("Confirm password: ")
        if first != confirm:
            print("Passwords do not match, try again", file=sys.stderr)
            continue
        return first


async def _create_admin(payload: dict[str, Any]) -> str:
    client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
    try:
        store = HelpdeskDocumentStore(client[settings.mongo_database])
        user = await AuthService(store).register_user(payload, allowed_roles=ROLES)
    finally:
        client.close()
    return user["id"]


async def _handle_createadmin(args: argparse.Namespace) -> int:
    username_check = validate_username(args.username)
    if not username_check.valid:
        print(username_check.errors[0], file=sys.stderr)
        return 1

    password = args.password or _prompt_for_password(bool(args.no_input))
    problems = _password_problems(password)
    if problems:
        print("\n".join(problems), file=sys.stderr)
        return 1

    admin_payload: dict[str, Any] = {
        "username": args.username,
        "email": args.email,
        "password": password,
        "first_name": args.first_name,
        "last_name": args.last_name,
        "department": args.department,
        "role": "admin",
        "status": "active",
        "email_verified": True,
    }

    try:
        user_id = await _create_admin(admin_payload)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print("Created administrator", f"user_id={user_id}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 1
    return asyncio.run(handler(args))


if __name__ == "__main__":  # pragma: no cover - manual execution guard
    raise SystemExit(main())
