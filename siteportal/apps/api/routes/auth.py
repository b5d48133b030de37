from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.deps import (
    get_current_principal,
    get_db,
    get_identity,
    get_rate_limiter,
    get_security_log,
)
from siteportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from siteportal.apps.api.rate_limit import (
    BUCKET_AUTH_LOGIN,
    BUCKET_AUTH_RESET,
    BUCKET_CLIENT,
    RateLimiter,
    enforce_rate_limit,
)
from siteportal.apps.api.response import message_response, success_response
from siteportal.core.config import get_settings
from siteportal.core.errors import ForbiddenError, UnauthorizedError, ValidationError
from siteportal.domain.models import AdminUser, Client
from siteportal.persistence.repos.principals import (
    get_admin,
    get_admin_by_email,
    get_client,
    get_client_by_email,
    normalize_email,
)
from siteportal.services.auth import tokens
from siteportal.services.auth.identity import LocalIdentityProvider
from siteportal.services.auth.passwords import validate_password
from siteportal.services.auth.principals import Principal, is_locked
from siteportal.services.security_log import SecurityEventLog, get_client_ip


router = APIRouter(prefix="/api/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)

INVALID_CREDENTIALS = "Invalid email or password"
RESET_REQUESTED_MESSAGE = "If an account exists with this email, a password reset link has been sent."


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=256)
    user_type: Literal["admin", "client"]


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirmRequest(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


def _user_payload(row: AdminUser | Client, user_type: str) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": row.id, "email": row.email, "name": row.name, "type": user_type}
    if isinstance(row, AdminUser):
        payload["role"] = row.role
    return payload


async def _load_account(db: AsyncSession, user_id: str, user_type: str) -> AdminUser | Client | None:
    if user_type == "admin":
        return await get_admin(db, user_id)
    return await get_client(db, user_id)


def _set_session_cookie(response: Response, access_token: str, max_age: int) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        access_token,
        max_age=max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


@router.post("/login")
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    limiter: RateLimiter = Depends(get_rate_limiter),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    email = normalize_email(payload.email)
    # Key by origin and identity jointly to slow both spraying and targeted guessing.
    await enforce_rate_limit(
        request=request,
        limiter=limiter,
        security_log=security_log,
        bucket=BUCKET_AUTH_LOGIN,
        identifier=f"{get_client_ip(request)}:{email}",
        response=response,
    )

    signed_in = await identity.sign_in_with_password(db, email, payload.password)
    if signed_in is None:
        await security_log.log(
            "login_failure",
            request=request,
            user_type=payload.user_type,
            details={"email": email, "reason": "invalid_credentials"},
        )
        if payload.user_type == "client":
            await _count_failed_client_login(db, request, security_log, email)
        raise UnauthorizedError(INVALID_CREDENTIALS)

    account = await _load_account(db, signed_in.user_id, payload.user_type)
    if account is None:
        # Discard the identity session created for an account of the other kind.
        await db.rollback()
        await security_log.log(
            "login_failure",
            request=request,
            user_id=signed_in.user_id,
            user_type=payload.user_type,
            details={"email": email, "reason": "user_type_mismatch"},
        )
        raise UnauthorizedError(INVALID_CREDENTIALS)
    # Rollback expires loaded rows, so read what the failure log needs first.
    account_id = account.id
    if not account.is_active:
        await db.rollback()
        await security_log.log(
            "login_failure",
            request=request,
            user_id=account_id,
            user_type=payload.user_type,
            details={"email": email, "reason": "account_deactivated"},
        )
        raise ForbiddenError("Account is deactivated")
    if isinstance(account, Client) and is_locked(account):
        await db.rollback()
        await security_log.log(
            "login_failure",
            request=request,
            user_id=account_id,
            user_type=payload.user_type,
            details={"email": email, "reason": "account_locked"},
        )
        raise ForbiddenError("Account is temporarily locked. Please try again later.")

    if isinstance(account, Client):
        await tokens.reset_failed_login_attempts(db, account.id)
    issued = await tokens.create_refresh_token(db, user_id=account.id, user_type=payload.user_type)
    await tokens.record_last_login(db, user_id=account.id, user_type=payload.user_type)
    user = _user_payload(account, payload.user_type)
    await db.commit()

    await security_log.log(
        "login_success",
        request=request,
        user_id=account.id,
        user_type=payload.user_type,
        details={"email": email},
    )
    _set_session_cookie(response, signed_in.access_token, signed_in.expires_in)
    return success_response(
        {
            "access_token": signed_in.access_token,
            "refresh_token": issued.token,
            "expires_in": signed_in.expires_in,
            "user": user,
        }
    )


async def _count_failed_client_login(
    db: AsyncSession,
    request: Request,
    security_log: SecurityEventLog,
    email: str,
) -> None:
    client = await get_client_by_email(db, email)
    if client is None:
        return
    state = await tokens.increment_failed_login_attempts(db, client.id)
    await db.commit()
    if state is None:
        return
    # Log only the transition into lockout, not every later failure.
    if state.attempts == get_settings().lockout_threshold and state.locked_until is not None:
        await security_log.log(
            "account_locked",
            request=request,
            user_id=client.id,
            user_type="client",
            details={
                "attempts": state.attempts,
                "locked_until": state.locked_until.isoformat(),
            },
        )


@router.post("/refresh")
async def refresh(
    payload: RefreshRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    await enforce_rate_limit(
        request=request,
        limiter=limiter,
        security_log=security_log,
        bucket=BUCKET_CLIENT,
        response=response,
    )
    # Check the owner before rotating so a refused refresh leaves the token untouched.
    owner = await tokens.validate_refresh_token(db, payload.refresh_token, touch=False)
    if owner is None:
        await security_log.log("invalid_token", request=request, details={"credential_kind": "refresh"})
        raise UnauthorizedError("Invalid or expired refresh token")

    account = await _load_account(db, owner.user_id, owner.user_type)
    if account is None:
        # The owner is gone; retire the orphaned secret.
        revoked = await tokens.revoke_refresh_token(db, payload.refresh_token)
        await db.commit()
        await security_log.log(
            "invalid_token",
            request=request,
            user_id=owner.user_id,
            user_type=owner.user_type,
            details={"credential_kind": "refresh", "reason": "user_not_found"},
        )
        await tokens.log_revocation(
            security_log,
            request=request,
            user_id=owner.user_id,
            user_type=owner.user_type,
            revoked=revoked,
            reason="user_not_found",
        )
        raise UnauthorizedError("Invalid or expired refresh token")
    # The account may have been deactivated or locked since the token was issued.
    if not account.is_active:
        revoked = await tokens.revoke_all_user_tokens(db, user_id=owner.user_id, user_type=owner.user_type)
        await db.commit()
        await tokens.log_revocation(
            security_log,
            request=request,
            user_id=owner.user_id,
            user_type=owner.user_type,
            revoked=revoked,
            reason="account_deactivated",
        )
        raise ForbiddenError("Account is deactivated")
    if isinstance(account, Client) and is_locked(account):
        raise ForbiddenError("Account is temporarily locked")

    rotated = await tokens.rotate_refresh_token(db, payload.refresh_token)
    if rotated is None:
        # A concurrent refresh consumed the same secret first.
        await db.rollback()
        await security_log.log(
            "invalid_token",
            request=request,
            user_id=owner.user_id,
            user_type=owner.user_type,
            details={"credential_kind": "refresh", "reason": "rotation_conflict"},
        )
        raise UnauthorizedError("Invalid or expired refresh token")
    _, issued = rotated

    user = _user_payload(account, owner.user_type)
    await db.commit()
    await security_log.log(
        "token_refresh",
        request=request,
        user_id=owner.user_id,
        user_type=owner.user_type,
    )
    return {
        "data": {
            "refresh_token": issued.token,
            "expires_at": issued.expires_at.isoformat(),
            "user": user,
        },
        "message": "Please re-authenticate to get a new access token",
    }


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    # Logout ends every session of the principal, not just this device.
    revoked = await tokens.revoke_all_user_tokens(db, user_id=principal.id, user_type=principal.kind)
    await identity.sign_out(db, principal.id)
    await db.commit()
    await security_log.log(
        "logout",
        request=request,
        user_id=principal.id,
        user_type=principal.kind,
        details={"revoked_sessions": revoked},
    )
    await tokens.log_revocation(
        security_log,
        request=request,
        user_id=principal.id,
        user_type=principal.kind,
        revoked=revoked,
        reason="logout",
    )
    response.delete_cookie(get_settings().session_cookie_name)
    return message_response("Logged out successfully")


async def _stamp_password_changed(db: AsyncSession, user_id: str, user_type: str) -> None:
    account = await _load_account(db, user_id, user_type)
    if account is not None:
        account.password_changed_at = datetime.now(timezone.utc)
        await db.flush()


@router.post("/password/change")
async def change_password(
    payload: PasswordChangeRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    validation = validate_password(payload.new_password, principal.email)
    if not validation.valid:
        raise ValidationError(validation.message())

    verified_id = await identity.verify_credentials(db, principal.email, payload.current_password)
    if verified_id != principal.id:
        await security_log.log(
            "password_change",
            request=request,
            user_id=principal.id,
            user_type=principal.kind,
            details={"success": False, "reason": "invalid_current_password"},
        )
        raise UnauthorizedError("Current password is incorrect")

    await identity.update_password(db, principal.id, payload.new_password)
    await _stamp_password_changed(db, principal.id, principal.kind)
    # Every other session must re-authenticate with the new password.
    revoked = await tokens.revoke_all_user_tokens(db, user_id=principal.id, user_type=principal.kind)
    await db.commit()
    await security_log.log(
        "password_change",
        request=request,
        user_id=principal.id,
        user_type=principal.kind,
        details={"success": True},
    )
    await tokens.log_revocation(
        security_log,
        request=request,
        user_id=principal.id,
        user_type=principal.kind,
        revoked=revoked,
        reason="password_change",
    )
    return message_response("Password changed successfully. Please log in again with your new password.")


@router.post("/password/reset")
async def request_password_reset(
    payload: PasswordResetRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    limiter: RateLimiter = Depends(get_rate_limiter),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    email = normalize_email(payload.email)
    await enforce_rate_limit(
        request=request,
        limiter=limiter,
        security_log=security_log,
        bucket=BUCKET_AUTH_RESET,
        identifier=f"{get_client_ip(request)}:{email}",
        response=response,
    )
    # Resolve configuration before the lookup so a misconfiguration cannot reveal which emails exist.
    redirect_to = f"{get_settings().require('app_base_url').rstrip('/')}/auth/reset-password"

    account: AdminUser | Client | None = await get_admin_by_email(db, email)
    if account is None:
        account = await get_client_by_email(db, email)
    user_found = account is not None and account.is_active
    if user_found:
        await identity.request_password_reset(db, email, redirect_to=redirect_to)
        await db.commit()

    await security_log.log(
        "password_reset_request",
        request=request,
        user_id=account.id if account is not None else None,
        details={"email": email, "user_found": user_found},
    )
    return message_response(RESET_REQUESTED_MESSAGE)


@router.post("/password/reset/confirm")
async def confirm_password_reset(
    payload: PasswordResetConfirmRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    limiter: RateLimiter = Depends(get_rate_limiter),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    await enforce_rate_limit(
        request=request,
        limiter=limiter,
        security_log=security_log,
        bucket=BUCKET_AUTH_RESET,
        response=response,
    )
    email = await identity.reset_token_email(db, payload.token)
    if email is None:
        await security_log.log("invalid_token", request=request, details={"credential_kind": "password_reset"})
        raise ValidationError("Invalid or expired reset token")
    validation = validate_password(payload.new_password, email)
    if not validation.valid:
        raise ValidationError(validation.message())

    user_id = await identity.complete_password_reset(db, payload.token, payload.new_password)
    if user_id is None:
        await db.rollback()
        await security_log.log("invalid_token", request=request, details={"credential_kind": "password_reset"})
        raise ValidationError("Invalid or expired reset token")

    user_type = "admin" if await get_admin(db, user_id) is not None else "client"
    await _stamp_password_changed(db, user_id, user_type)
    revoked = await tokens.revoke_all_user_tokens(db, user_id=user_id, user_type=user_type)
    await db.commit()
    await security_log.log(
        "password_reset_complete",
        request=request,
        user_id=user_id,
        user_type=user_type,
    )
    await tokens.log_revocation(
        security_log,
        request=request,
        user_id=user_id,
        user_type=user_type,
        revoked=revoked,
        reason="password_reset",
    )
    return message_response("Password has been reset. Please log in with your new password.")
