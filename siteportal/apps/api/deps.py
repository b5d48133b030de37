from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.rate_limit import RateLimiter, enforce_rate_limit
from siteportal.core.config import get_settings
from siteportal.core.errors import ForbiddenError, UnauthorizedError
from siteportal.persistence.db import get_session
from siteportal.services.auth.identity import LocalIdentityProvider
from siteportal.services.auth.principals import (
    AdminPrincipal,
    ClientPrincipal,
    Principal,
    parse_bearer_token,
    resolve_principal,
)
from siteportal.services.security_log import SecurityEventLog


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_identity(request: Request) -> LocalIdentityProvider:
    # Process-owned handles live on app.state; see create_app.
    return request.app.state.identity


def get_security_log(request: Request) -> SecurityEventLog:
    return request.app.state.security_log


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def session_credentials(request: Request) -> tuple[str | None, str | None]:
    bearer = parse_bearer_token(request.headers.get("Authorization"))
    cookie = request.cookies.get(get_settings().session_cookie_name)
    return bearer, cookie


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity: LocalIdentityProvider = Depends(get_identity),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> Principal:
    bearer, cookie = session_credentials(request)
    try:
        principal = await resolve_principal(db, identity, bearer_token=bearer, cookie_token=cookie)
    except UnauthorizedError as exc:
        if bearer or cookie:
            await security_log.log(
                "invalid_token",
                request=request,
                details={"reason": exc.user_message},
            )
        raise
    request.state.principal = principal
    return principal


async def require_admin(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> AdminPrincipal:
    if not isinstance(principal, AdminPrincipal):
        await security_log.log(
            "permission_denied",
            request=request,
            user_id=principal.id,
            user_type=principal.kind,
            details={"required": "admin"},
        )
        raise ForbiddenError("Admin access required")
    return principal


async def require_super_admin(
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> AdminPrincipal:
    if not principal.is_super_admin:
        await security_log.log(
            "permission_denied",
            request=request,
            user_id=principal.id,
            user_type=principal.kind,
            details={"required": "super_admin", "role": principal.role},
        )
        raise ForbiddenError("Super admin access required")
    return principal


async def require_client(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> ClientPrincipal:
    if not isinstance(principal, ClientPrincipal):
        await security_log.log(
            "permission_denied",
            request=request,
            user_id=principal.id,
            user_type=principal.kind,
            details={"required": "client"},
        )
        raise ForbiddenError("Client access required")
    return principal


def rate_limited(bucket: str):
    # Router-level dependency keyed by the authenticated principal rather than the address.
    async def _dependency(
        request: Request,
        response: Response,
        principal: Principal = Depends(get_current_principal),
        limiter: RateLimiter = Depends(get_rate_limiter),
        security_log: SecurityEventLog = Depends(get_security_log),
    ) -> None:
        await enforce_rate_limit(
            request=request,
            limiter=limiter,
            security_log=security_log,
            bucket=bucket,
            identifier=f"{principal.kind}:{principal.id}",
            response=response,
            user_id=principal.id,
            user_type=principal.kind,
        )

    return _dependency
