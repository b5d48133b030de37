from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.deps import get_db, get_identity, get_security_log, rate_limited, require_admin
from siteportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from siteportal.apps.api.rate_limit import BUCKET_ADMIN
from siteportal.apps.api.response import success_response
from siteportal.apps.api.serializers import client_payload, site_payload
from siteportal.core.errors import ConflictError, NotFoundError, ValidationError
from siteportal.domain.models import AuthUser, Client
from siteportal.persistence.repos import principals as principals_repo
from siteportal.persistence.repos.sites import list_sites
from siteportal.services.auth import tokens
from siteportal.services.auth.identity import LocalIdentityProvider
from siteportal.services.auth.passwords import generate_valid_password, validate_password
from siteportal.services.auth.principals import AdminPrincipal
from siteportal.services.security.sanitize import sanitize_text
from siteportal.services.security_log import SecurityEventLog


router = APIRouter(
    prefix="/api/admin/clients",
    tags=["admin"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(BUCKET_ADMIN))],
)

EMAIL_IN_USE = "A user with this email already exists"


class ClientCreateRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    company: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    # Omit to have a compliant temporary password generated and returned once.
    password: str | None = None


class ClientUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    company: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    is_active: bool | None = None


class ClientPasswordResetRequest(BaseModel):
    new_password: str | None = None


async def _require_client(db: AsyncSession, client_id: str) -> Client:
    client = await principals_repo.get_client(db, client_id)
    if client is None:
        raise NotFoundError("Client not found")
    return client


def _resolve_password(requested: str | None, email: str) -> tuple[str, bool]:
    if requested is None:
        return generate_valid_password(email=email), True
    validation = validate_password(requested, email)
    if not validation.valid:
        raise ValidationError(validation.message())
    return requested, False


async def _admin_action(
    security_log: SecurityEventLog,
    request: Request,
    principal: AdminPrincipal,
    action: str,
    **details: Any,
) -> None:
    await security_log.log(
        "admin_action",
        request=request,
        user_id=principal.id,
        user_type="admin",
        details={"action": action, **details},
    )


@router.get("")
async def list_clients(
    include_inactive: bool = Query(default=True),
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await principals_repo.list_clients(db, include_inactive=include_inactive)
    return success_response([client_payload(row) for row in rows])


@router.post("", status_code=201)
async def create_client(
    payload: ClientCreateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    email = principals_repo.normalize_email(payload.email)
    existing = await db.execute(select(AuthUser.id).where(AuthUser.email == email))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(EMAIL_IN_USE)
    password, generated = _resolve_password(payload.password, email)

    # The identity account and the client row share one id.
    client_id = uuid4().hex
    await identity.create_user(db, email=email, password=password, user_id=client_id)
    client = await principals_repo.create_client(
        db,
        client_id=client_id,
        email=email,
        name=sanitize_text(payload.name),
        company=sanitize_text(payload.company) if payload.company else None,
        phone=payload.phone,
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(EMAIL_IN_USE, internal_message=str(exc.orig)) from exc

    await _admin_action(security_log, request, principal, "create_client", client_id=client.id)
    data = client_payload(client)
    if generated:
        data["temporary_password"] = password
    return success_response(data)


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    client = await _require_client(db, client_id)
    data = client_payload(client)
    data["sites"] = [site_payload(site) for site in await list_sites(db, client_id=client.id)]
    return success_response(data)


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    payload: ClientUpdateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    client = await _require_client(db, client_id)
    fields = payload.model_dump(exclude_none=True)
    for key in ("name", "company"):
        if key in fields:
            fields[key] = sanitize_text(fields[key])
    was_active = client.is_active
    await principals_repo.update_client(db, client, fields)
    revoked = 0
    if was_active and fields.get("is_active") is False:
        # Deactivation ends every live session immediately.
        revoked = await tokens.revoke_all_user_tokens(db, user_id=client.id, user_type="client")
        await identity.sign_out(db, client.id)
    await db.commit()
    await _admin_action(
        security_log, request, principal, "update_client", client_id=client.id, fields=sorted(fields)
    )
    await tokens.log_revocation(
        security_log,
        request=request,
        user_id=client.id,
        user_type="client",
        revoked=revoked,
        reason="account_deactivated",
    )
    return success_response(client_payload(client))


@router.post("/{client_id}/reset-password")
async def reset_client_password(
    client_id: str,
    payload: ClientPasswordResetRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    client = await _require_client(db, client_id)
    password, generated = _resolve_password(payload.new_password, client.email)
    await identity.update_password(db, client.id, password)
    client.password_changed_at = datetime.now(timezone.utc)
    revoked = await tokens.revoke_all_user_tokens(db, user_id=client.id, user_type="client")
    await db.commit()
    await _admin_action(security_log, request, principal, "reset_client_password", client_id=client.id)
    await tokens.log_revocation(
        security_log,
        request=request,
        user_id=client.id,
        user_type="client",
        revoked=revoked,
        reason="admin_password_reset",
    )
    data: dict[str, Any] = {"client_id": client.id}
    if generated:
        data["temporary_password"] = password
    return success_response(data)


@router.post("/{client_id}/unlock")
async def unlock_client(
    client_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    client = await _require_client(db, client_id)
    await tokens.reset_failed_login_attempts(db, client.id)
    await db.commit()
    await db.refresh(client)
    await security_log.log(
        "account_unlocked",
        request=request,
        user_id=client.id,
        user_type="client",
        details={"unlocked_by": principal.id},
    )
    return success_response(client_payload(client))
