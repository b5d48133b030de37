from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from siteportal.domain.models import Client, RefreshToken
from siteportal.persistence.db import SessionLocal
from siteportal.services.auth import tokens
from siteportal.tests.utils.portal import seed_client


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def _issue(user_id: str = "user-1", user_type: str = "client", **kwargs) -> tokens.IssuedRefreshToken:
    async with SessionLocal() as session:
        issued = await tokens.create_refresh_token(session, user_id=user_id, user_type=user_type, **kwargs)
        await session.commit()
    return issued


@pytest.mark.asyncio
async def test_only_the_hash_is_stored() -> None:
    issued = await _issue()
    async with SessionLocal() as session:
        row = (await session.execute(select(RefreshToken))).scalar_one()
    assert row.token_hash == tokens.hash_refresh_token(issued.token)
    assert row.token_hash != issued.token
    assert row.expires_at - row.created_at == timedelta(days=7)


@pytest.mark.asyncio
async def test_validate_returns_owner_and_touches_last_used() -> None:
    issued = await _issue(user_id="admin-1", user_type="admin")
    async with SessionLocal() as session:
        owner = await tokens.validate_refresh_token(session, issued.token)
    assert owner is not None
    assert (owner.user_id, owner.user_type) == ("admin-1", "admin")
    async with SessionLocal() as session:
        row = (await session.execute(select(RefreshToken))).scalar_one()
    assert row.last_used_at is not None


@pytest.mark.asyncio
async def test_unknown_expired_and_revoked_tokens_are_invalid() -> None:
    async with SessionLocal() as session:
        assert await tokens.validate_refresh_token(session, "not-a-token") is None

    stale = await _issue(now=_utc_now() - timedelta(days=8))
    async with SessionLocal() as session:
        assert await tokens.validate_refresh_token(session, stale.token) is None

    revoked = await _issue()
    async with SessionLocal() as session:
        await tokens.revoke_refresh_token(session, revoked.token)
        await session.commit()
    async with SessionLocal() as session:
        assert await tokens.validate_refresh_token(session, revoked.token) is None


@pytest.mark.asyncio
async def test_rotation_succeeds_at_most_once() -> None:
    issued = await _issue()
    async with SessionLocal() as session:
        rotated = await tokens.rotate_refresh_token(session, issued.token)
        await session.commit()
    assert rotated is not None
    owner, successor = rotated
    assert owner.user_id == "user-1"
    assert successor.token != issued.token

    # Replaying the consumed secret fails; the successor remains usable.
    async with SessionLocal() as session:
        assert await tokens.rotate_refresh_token(session, issued.token) is None
    async with SessionLocal() as session:
        assert await tokens.validate_refresh_token(session, successor.token, touch=False) is not None


@pytest.mark.asyncio
async def test_revoke_all_and_cleanup() -> None:
    for _ in range(3):
        await _issue(user_id="user-9")
    await _issue(user_id="user-9", user_type="admin")
    await _issue(user_id="user-10", now=_utc_now() - timedelta(days=30))

    async with SessionLocal() as session:
        revoked = await tokens.revoke_all_user_tokens(session, user_id="user-9", user_type="client")
        removed = await tokens.cleanup_expired_tokens(session)
        await session.commit()
    assert revoked == 3
    assert removed == 1

    async with SessionLocal() as session:
        rows = (await session.execute(select(RefreshToken))).scalars().all()
    assert len(rows) == 4
    live = [row for row in rows if row.revoked_at is None]
    assert [row.user_type for row in live] == ["admin"]


@pytest.mark.asyncio
async def test_create_rejects_unknown_principal_kind() -> None:
    async with SessionLocal() as session:
        with pytest.raises(ValueError):
            await tokens.create_refresh_token(session, user_id="x", user_type="robot")


@pytest.mark.asyncio
async def test_failed_logins_lock_at_threshold_and_reset() -> None:
    client_id = await seed_client()
    states = []
    async with SessionLocal() as session:
        for _ in range(5):
            states.append(await tokens.increment_failed_login_attempts(session, client_id))
        await session.commit()

    assert [state.attempts for state in states] == [1, 2, 3, 4, 5]
    assert all(state.locked_until is None for state in states[:4])
    locked_until = states[4].locked_until
    assert locked_until is not None
    assert timedelta(minutes=14) < locked_until - _utc_now() <= timedelta(minutes=15)

    async with SessionLocal() as session:
        await tokens.reset_failed_login_attempts(session, client_id)
        await session.commit()
    async with SessionLocal() as session:
        client = await session.get(Client, client_id)
    assert client.failed_login_attempts == 0
    assert client.locked_until is None


@pytest.mark.asyncio
async def test_increment_for_unknown_client_is_noop() -> None:
    async with SessionLocal() as session:
        assert await tokens.increment_failed_login_attempts(session, "missing") is None
