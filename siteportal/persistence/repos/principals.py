from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.domain.models import AdminUser, Client


ADMIN_ROLES = ("super_admin", "admin", "editor")


def normalize_email(email: str) -> str:
    # Emails are compared case-insensitively everywhere.
    return email.strip().lower()


async def get_admin(session: AsyncSession, admin_id: str) -> AdminUser | None:
    result = await session.execute(select(AdminUser).where(AdminUser.id == admin_id))
    return result.scalar_one_or_none()


async def get_admin_by_email(session: AsyncSession, email: str) -> AdminUser | None:
    result = await session.execute(select(AdminUser).where(AdminUser.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def create_admin(
    session: AsyncSession, *, admin_id: str, email: str, name: str, role: str = "admin"
) -> AdminUser:
    admin = AdminUser(id=admin_id, email=normalize_email(email), name=name, role=role, is_active=True)
    session.add(admin)
    await session.flush()
    return admin


async def get_client(session: AsyncSession, client_id: str) -> Client | None:
    result = await session.execute(select(Client).where(Client.id == client_id))
    return result.scalar_one_or_none()


async def get_client_by_email(session: AsyncSession, email: str) -> Client | None:
    result = await session.execute(select(Client).where(Client.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def list_clients(session: AsyncSession, *, include_inactive: bool = True) -> list[Client]:
    stmt = select(Client)
    if not include_inactive:
        stmt = stmt.where(Client.is_active.is_(True))
    stmt = stmt.order_by(Client.name, Client.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_client(
    session: AsyncSession,
    *,
    client_id: str,
    email: str,
    name: str,
    company: str | None = None,
    phone: str | None = None,
) -> Client:
    client = Client(
        id=client_id,
        email=normalize_email(email),
        name=name,
        company=company,
        phone=phone,
        is_active=True,
        failed_login_attempts=0,
    )
    session.add(client)
    await session.flush()
    return client


async def update_client(session: AsyncSession, client: Client, fields: dict[str, Any]) -> Client:
    for key in ("name", "company", "phone", "is_active"):
        if key in fields and fields[key] is not None:
            setattr(client, key, fields[key])
    await session.flush()
    return client
