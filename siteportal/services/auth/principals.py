from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Literal, Union

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.core.errors import ForbiddenError, IntegrityViolationError, UnauthorizedError
from siteportal.domain.models import AdminUser, Client
from siteportal.persistence.repos.principals import get_admin, get_client
from siteportal.services.auth.identity import LocalIdentityProvider


logger = logging.getLogger(__name__)


class AdminPrincipal(BaseModel):
    kind: Literal["admin"] = "admin"
    id: str
    email: str
    name: str
    role: str

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"


class ClientPrincipal(BaseModel):
    kind: Literal["client"] = "client"
    id: str
    email: str
    name: str


Principal = Union[AdminPrincipal, ClientPrincipal]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_locked(client: Client, now: datetime | None = None) -> bool:
    return client.locked_until is not None and client.locked_until > (now or _utc_now())


def admin_principal(admin: AdminUser) -> AdminPrincipal:
    return AdminPrincipal(id=admin.id, email=admin.email, name=admin.name, role=admin.role)


def client_principal(client: Client) -> ClientPrincipal:
    return ClientPrincipal(id=client.id, email=client.email, name=client.name)


async def load_principal(session: AsyncSession, user_id: str) -> Principal:
    """Map an authenticated account id onto exactly one principal kind.

    Admins are checked first; the client table is consulted only on a miss.
    """
    admin = await get_admin(session, user_id)
    if admin is not None:
        # An id in both tables is corrupt data, never a dual-role account.
        if await get_client(session, user_id) is not None:
            logger.error("principal_integrity_violation user_id=%s", user_id)
            raise IntegrityViolationError(internal_message=f"principal {user_id} exists as admin and client")
        if not admin.is_active:
            raise ForbiddenError("Account is deactivated")
        return admin_principal(admin)

    client = await get_client(session, user_id)
    if client is None:
        raise UnauthorizedError("User not found")
    if not client.is_active:
        raise ForbiddenError("Account is deactivated")
    if is_locked(client):
        raise ForbiddenError("Account is temporarily locked")
    return client_principal(client)


def parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def resolve_principal(
    session: AsyncSession,
    identity: LocalIdentityProvider,
    *,
    bearer_token: str | None,
    cookie_token: str | None,
) -> Principal:
    # Bearer first; the cookie session is the fallback when the bearer is absent or rejected.
    user_id = None
    if bearer_token:
        user_id = await identity.get_user(session, bearer_token)
    if user_id is None and cookie_token:
        user_id = await identity.get_user(session, cookie_token)
    if user_id is None:
        raise UnauthorizedError("Invalid or expired session")
    return await load_principal(session, user_id)
