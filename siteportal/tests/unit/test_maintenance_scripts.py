from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from scripts import cleanup_refresh_tokens, create_admin, regenerate_site_api_key
from siteportal.domain.models import RefreshToken, SecurityLog
from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos.principals import get_admin_by_email
from siteportal.persistence.repos.sites import get_site_by_slug
from siteportal.services.auth import tokens
from siteportal.services.auth.identity import LocalIdentityProvider
from siteportal.tests.utils.portal import seed_client, seed_site


@pytest.mark.asyncio
async def test_create_admin_prints_a_working_password_once(capsys) -> None:
    args = argparse.Namespace(email="Root@Example.com", name="Root", role="super_admin", prompt_password=False)
    assert await create_admin._create(args) == 0
    output = capsys.readouterr().out
    password = output.split("Temporary password: ", 1)[1].strip()

    async with SessionLocal() as session:
        admin = await get_admin_by_email(session, "root@example.com")
        assert admin is not None
        assert admin.role == "super_admin"
        assert await LocalIdentityProvider().verify_credentials(session, "root@example.com", password) == admin.id
        logged = (await session.execute(select(SecurityLog.event_type))).scalars().all()
    assert logged == ["admin_action"]

    with pytest.raises(ValueError):
        await create_admin._create(args)


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_tokens(capsys) -> None:
    client_id = await seed_client()
    async with SessionLocal() as session:
        await tokens.create_refresh_token(session, user_id=client_id, user_type="client")
        await tokens.create_refresh_token(
            session,
            user_id=client_id,
            user_type="client",
            now=datetime.now(timezone.utc) - timedelta(days=365),
        )
        await session.commit()

    assert await cleanup_refresh_tokens._cleanup() == 0
    assert "Removed 1 expired refresh tokens" in capsys.readouterr().out
    async with SessionLocal() as session:
        remaining = (await session.execute(select(RefreshToken.id))).scalars().all()
    assert len(remaining) == 1


@pytest.mark.asyncio
async def test_regenerate_site_api_key_replaces_the_key(capsys) -> None:
    site = await seed_site(slug="script-site")
    assert await regenerate_site_api_key._regenerate("script-site") == 0
    async with SessionLocal() as session:
        refreshed = await get_site_by_slug(session, "script-site")
    assert refreshed.api_key != site.api_key
    assert refreshed.api_key in capsys.readouterr().out

    with pytest.raises(ValueError):
        await regenerate_site_api_key._regenerate("missing-site")
