from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import secrets
from uuid import uuid4

from sqlalchemy import case, delete, literal, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from siteportal.core.config import get_settings
from siteportal.domain.models import AdminUser, Client, RefreshToken, UTCDateTime
from siteportal.persistence.db import SessionLocal
from siteportal.services.security_log import SecurityEventLog


logger = logging.getLogger(__name__)

PRINCIPAL_KINDS = ("admin", "client")


def _utc_now() -> datetime:
    # Keep token timestamps in UTC for consistent expiry checks.
    return datetime.now(timezone.utc)


def hash_refresh_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class RefreshTokenOwner:
    token_id: str
    user_id: str
    user_type: str


@dataclass(frozen=True)
class LockoutState:
    attempts: int
    locked_until: datetime | None


async def create_refresh_token(
    session: AsyncSession,
    *,
    user_id: str,
    user_type: str,
    now: datetime | None = None,
) -> IssuedRefreshToken:
    # The clear secret leaves this function exactly once; only its hash is stored.
    if user_type not in PRINCIPAL_KINDS:
        raise ValueError(f"Unsupported principal kind: {user_type}")
    now = now or _utc_now()
    raw_token = secrets.token_urlsafe(48)
    expires_at = now + timedelta(days=get_settings().refresh_token_ttl_days)
    session.add(
        RefreshToken(
            id=uuid4().hex,
            user_id=user_id,
            user_type=user_type,
            token_hash=hash_refresh_token(raw_token),
            expires_at=expires_at,
            created_at=now,
        )
    )
    await session.flush()
    return IssuedRefreshToken(token=raw_token, expires_at=expires_at)


async def _find_active(
    session: AsyncSession, raw_token: str, now: datetime
) -> RefreshToken | None:
    result = await session.execute(
        select(RefreshToken).where(RefreshToken.token_hash == hash_refresh_token(raw_token))
    )
    row = result.scalar_one_or_none()
    # Callers get one uniform "invalid" outcome; only the log line says why.
    if row is None:
        logger.info("refresh_token_invalid reason=not_found")
        return None
    if row.revoked_at is not None:
        logger.info("refresh_token_invalid reason=revoked token_id=%s", row.id)
        return None
    if row.expires_at <= now:
        logger.info("refresh_token_invalid reason=expired token_id=%s", row.id)
        return None
    return row


async def _touch_last_used(token_id: str) -> None:
    # Update last_used_at outside the caller's transaction; failures never invalidate the token.
    async with SessionLocal() as session:
        try:
            await session.execute(
                update(RefreshToken)
                .where(RefreshToken.id == token_id)
                .values(last_used_at=_utc_now())
            )
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("refresh_token_touch_failed token_id=%s error=%s", token_id, exc)


async def validate_refresh_token(
    session: AsyncSession,
    raw_token: str,
    *,
    touch: bool = True,
    now: datetime | None = None,
) -> RefreshTokenOwner | None:
    row = await _find_active(session, raw_token, now or _utc_now())
    if row is None:
        return None
    owner = RefreshTokenOwner(token_id=row.id, user_id=row.user_id, user_type=row.user_type)
    if touch:
        await _touch_last_used(row.id)
    return owner


async def rotate_refresh_token(
    session: AsyncSession,
    raw_token: str,
    *,
    now: datetime | None = None,
) -> tuple[RefreshTokenOwner, IssuedRefreshToken] | None:
    """Revoke the presented token and issue its successor in one transaction.

    The revoke is a compare-and-swap on ``revoked_at IS NULL`` so two concurrent
    rotations of the same secret cannot both succeed. The caller commits.
    """
    now = now or _utc_now()
    row = await _find_active(session, raw_token, now)
    if row is None:
        return None
    result = await session.execute(
        update(RefreshToken)
        .where(RefreshToken.id == row.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=now, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("refresh_token_rotation_lost_race token_id=%s", row.id)
        return None
    owner = RefreshTokenOwner(token_id=row.id, user_id=row.user_id, user_type=row.user_type)
    issued = await create_refresh_token(session, user_id=row.user_id, user_type=row.user_type, now=now)
    return owner, issued


async def revoke_refresh_token(session: AsyncSession, raw_token: str) -> int:
    # Idempotent: revoking an unknown or already revoked token is a no-op.
    result = await session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.token_hash == hash_refresh_token(raw_token),
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=_utc_now())
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def revoke_all_user_tokens(session: AsyncSession, *, user_id: str, user_type: str) -> int:
    result = await session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.user_type == user_type,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=_utc_now())
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def log_revocation(
    security_log: SecurityEventLog,
    *,
    request: Request | None,
    user_id: str,
    user_type: str,
    revoked: int,
    reason: str,
) -> None:
    # Only revocations that actually ended a session are security events.
    if revoked <= 0:
        return
    await security_log.log(
        "token_revoked",
        request=request,
        user_id=user_id,
        user_type=user_type,
        details={"reason": reason, "revoked_sessions": revoked},
    )


async def cleanup_expired_tokens(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Physically remove expired rows regardless of revocation state.
    result = await session.execute(
        delete(RefreshToken)
        .where(RefreshToken.expires_at < (now or _utc_now()))
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def increment_failed_login_attempts(
    session: AsyncSession,
    client_id: str,
    *,
    now: datetime | None = None,
) -> LockoutState | None:
    # Single UPDATE ... RETURNING so concurrent failures never lose an increment.
    settings = get_settings()
    now = now or _utc_now()
    lock_until = now + timedelta(minutes=settings.lockout_minutes)
    next_attempts = Client.failed_login_attempts + 1
    result = await session.execute(
        update(Client)
        .where(Client.id == client_id)
        .values(
            failed_login_attempts=next_attempts,
            locked_until=case(
                (next_attempts >= settings.lockout_threshold, literal(lock_until, UTCDateTime())),
                else_=Client.locked_until,
            ),
        )
        .returning(Client.failed_login_attempts, Client.locked_until)
        .execution_options(synchronize_session=False)
    )
    row = result.first()
    if row is None:
        return None
    return LockoutState(attempts=int(row[0]), locked_until=row[1])


async def reset_failed_login_attempts(session: AsyncSession, client_id: str) -> None:
    await session.execute(
        update(Client)
        .where(Client.id == client_id)
        .values(failed_login_attempts=0, locked_until=None)
        .execution_options(synchronize_session=False)
    )


async def record_last_login(session: AsyncSession, *, user_id: str, user_type: str) -> None:
    model = AdminUser if user_type == "admin" else Client
    await session.execute(
        update(model)
        .where(model.id == user_id)
        .values(last_login_at=_utc_now())
        .execution_options(synchronize_session=False)
    )
