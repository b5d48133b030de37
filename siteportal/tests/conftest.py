from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite database before any siteportal import reads them.
_DB_DIR = tempfile.mkdtemp(prefix="siteportal-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'portal.db')}"
os.environ.setdefault("IDENTITY_JWT_SECRET", "test-signing-secret-with-enough-entropy-0123456789")
os.environ.setdefault("APP_BASE_URL", "https://portal.test")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("RATE_LIMIT_REDIS_URL", "")

import pytest  # noqa: E402

from siteportal.core.config import get_settings  # noqa: E402
from siteportal.domain.models import Base  # noqa: E402
from siteportal.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def database() -> None:
    # Fresh schema per test; dispose the engine so no connection outlives its event loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    # Clear settings cache between tests to avoid leaking env overrides.
    yield
    get_settings.cache_clear()
