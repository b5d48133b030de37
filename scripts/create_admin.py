from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from uuid import uuid4

from sqlalchemy import select

from siteportal.domain.models import AuthUser
from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos.principals import ADMIN_ROLES, create_admin, normalize_email
from siteportal.services.auth.identity import LocalIdentityProvider
from siteportal.services.auth.passwords import generate_valid_password, validate_password
from siteportal.services.security_log import SecurityEventLog


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI arguments explicit; the first super admin is seeded from here.
    parser = argparse.ArgumentParser(description="Create an administrator account")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--role", default="admin", choices=ADMIN_ROLES, help="Administrator role")
    parser.add_argument(
        "--prompt-password",
        action="store_true",
        help="Read the password interactively instead of generating one",
    )
    return parser


def _read_password(email: str) -> str:
    password = getpass.getpass("Password: ")
    validation = validate_password(password, email)
    if not validation.valid:
        raise ValueError(validation.message())
    if getpass.getpass("Confirm password: ") != password:
        raise ValueError("Passwords do not match")
    return password


async def _create(args: argparse.Namespace) -> int:
    email = normalize_email(args.email)
    if args.prompt_password:
        password, generated = _read_password(email), False
    else:
        password, generated = generate_valid_password(email=email), True

    identity = LocalIdentityProvider()
    async with SessionLocal() as session:
        existing = await session.execute(select(AuthUser.id).where(AuthUser.email == email))
        if existing.scalar_one_or_none() is not None:
            raise ValueError("A user with this email already exists")
        # The identity account and the admin row share one id.
        admin_id = uuid4().hex
        await identity.create_user(session, email=email, password=password, user_id=admin_id)
        await create_admin(session, admin_id=admin_id, email=email, name=args.name, role=args.role)
        await session.commit()

    await SecurityEventLog().log(
        "admin_action",
        user_id=admin_id,
        user_type="admin",
        details={"action": "create_admin", "role": args.role, "actor": "create_admin"},
    )
    print(f"Created {args.role} {email} id={admin_id}")
    if generated:
        # Shown once; only the hash is stored.
        print(f"Temporary password: {password}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
