from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import secrets
import time
from typing import Awaitable, Callable
from uuid import uuid4

import jwt
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.core.config import Settings, get_settings
from siteportal.domain.models import AuthSession, AuthUser, PasswordResetToken
from siteportal.persistence.repos.principals import normalize_email
from siteportal.services.auth.passwords import hash_password, verify_password


logger = logging.getLogger(__name__)

_JWT_ALGORITHM = "HS256"
# Verified against unknown emails so lookups and wrong passwords take equal time.
_DUMMY_HASH = hash_password(secrets.token_urlsafe(16))

ResetSender = Callable[[str, str], Awaitable[None]]


@dataclass(frozen=True)
class IdentitySession:
    user_id: str
    access_token: str
    expires_in: int
    session_id: str


async def _log_reset_link(email: str, link: str) -> None:
    # Mail delivery is an external collaborator; never log the link itself.
    logger.info("password_reset_link_issued email=%s", email)


def _hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class LocalIdentityProvider:
    """Password identity provider backed by the relational store.

    Access credentials are short-lived HS256 JWTs carrying the account id
    (``sub``) and a server-side session id (``sid``) so sign-out takes effect
    before the credential expires.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        reset_sender: ResetSender | None = None,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        self._settings = settings
        self._reset_sender = reset_sender or _log_reset_link
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or time.time

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._time_provider(), tz=timezone.utc)

    def _secret(self) -> str:
        return self.settings.require("identity_jwt_secret")

    async def create_user(
        self,
        session: AsyncSession,
        *,
        email: str,
        password: str,
        user_id: str | None = None,
    ) -> AuthUser:
        user = AuthUser(
            id=user_id or uuid4().hex,
            email=normalize_email(email),
            password_hash=hash_password(password),
        )
        session.add(user)
        await session.flush()
        return user

    async def _get_by_email(self, session: AsyncSession, email: str) -> AuthUser | None:
        result = await session.execute(select(AuthUser).where(AuthUser.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def verify_credentials(self, session: AsyncSession, email: str, password: str) -> str | None:
        # Check a password without creating a session.
        user = await self._get_by_email(session, email)
        if user is None:
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user.id

    async def sign_in_with_password(
        self, session: AsyncSession, email: str, password: str
    ) -> IdentitySession | None:
        user_id = await self.verify_credentials(session, email, password)
        if user_id is None:
            return None
        return await self._issue_session(session, user_id)

    async def _issue_session(self, session: AsyncSession, user_id: str) -> IdentitySession:
        secret = self._secret()
        now = self._now()
        ttl = int(self.settings.access_token_ttl_s)
        auth_session = AuthSession(
            id=uuid4().hex,
            user_id=user_id,
            expires_at=now + timedelta(seconds=ttl),
            created_at=now,
        )
        session.add(auth_session)
        await session.flush()
        payload = {
            "sub": user_id,
            "sid": auth_session.id,
            "iss": self.settings.identity_issuer,
            "iat": int(now.timestamp()),
            "exp": int(now.timestamp()) + ttl,
        }
        token = jwt.encode(payload, secret, algorithm=_JWT_ALGORITHM)
        return IdentitySession(user_id=user_id, access_token=token, expires_in=ttl, session_id=auth_session.id)

    async def get_user(self, session: AsyncSession, access_token: str) -> str | None:
        # Returns the authenticated account id, or None for any invalid credential.
        secret = self._secret()
        # Time claims are checked against the provider clock below, not the library's.
        try:
            claims = jwt.decode(
                access_token,
                secret,
                algorithms=[_JWT_ALGORITHM],
                issuer=self.settings.identity_issuer,
                options={"require": ["sub", "sid", "exp"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.PyJWTError as exc:
            logger.info("access_token_rejected reason=%s", type(exc).__name__)
            return None
        now = self._now()
        if int(claims["exp"]) <= int(now.timestamp()):
            return None
        result = await session.execute(
            select(AuthSession).where(
                AuthSession.id == str(claims["sid"]),
                AuthSession.user_id == str(claims["sub"]),
            )
        )
        auth_session = result.scalar_one_or_none()
        if auth_session is None or auth_session.revoked_at is not None:
            return None
        if auth_session.expires_at <= now:
            return None
        return auth_session.user_id

    async def sign_out(self, session: AsyncSession, user_id: str) -> None:
        # Global sign-out: every live session for the account stops authenticating.
        await session.execute(
            update(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.revoked_at.is_(None))
            .values(revoked_at=self._now())
            .execution_options(synchronize_session=False)
        )

    async def update_password(self, session: AsyncSession, user_id: str, new_password: str) -> None:
        result = await session.execute(select(AuthUser).where(AuthUser.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise LookupError(f"identity user {user_id} not found")
        user.password_hash = hash_password(new_password)
        await session.flush()
        await self.sign_out(session, user_id)

    async def request_password_reset(self, session: AsyncSession, email: str, *, redirect_to: str) -> bool:
        user = await self._get_by_email(session, email)
        if user is None:
            return False
        raw_token = secrets.token_urlsafe(32)
        now = self._now()
        session.add(
            PasswordResetToken(
                id=uuid4().hex,
                user_id=user.id,
                token_hash=_hash_reset_token(raw_token),
                expires_at=now + timedelta(seconds=int(self.settings.password_reset_ttl_s)),
                created_at=now,
            )
        )
        await session.flush()
        separator = "&" if "?" in redirect_to else "?"
        await self._reset_sender(user.email, f"{redirect_to}{separator}token={raw_token}")
        return True

    async def _active_reset_token(self, session: AsyncSession, raw_token: str) -> PasswordResetToken | None:
        result = await session.execute(
            select(PasswordResetToken).where(PasswordResetToken.token_hash == _hash_reset_token(raw_token))
        )
        row = result.scalar_one_or_none()
        if row is None or row.used_at is not None or row.expires_at <= self._now():
            return None
        return row

    async def reset_token_email(self, session: AsyncSession, raw_token: str) -> str | None:
        # Peek at the account behind a reset token without consuming it.
        row = await self._active_reset_token(session, raw_token)
        if row is None:
            return None
        result = await session.execute(select(AuthUser.email).where(AuthUser.id == row.user_id))
        return result.scalar_one_or_none()

    async def complete_password_reset(
        self, session: AsyncSession, raw_token: str, new_password: str
    ) -> str | None:
        # Single use: the token is consumed with a compare-and-swap on used_at.
        now = self._now()
        row = await self._active_reset_token(session, raw_token)
        if row is None:
            return None
        consumed = await session.execute(
            update(PasswordResetToken)
            .where(PasswordResetToken.id == row.id, PasswordResetToken.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            return None
        await self.update_password(session, row.user_id, new_password)
        return row.user_id


