from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from siteportal.core.config import Settings, get_settings


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True}
    if _is_sqlite(settings.database_url):
        return options
    # Bounded asyncpg pool; publishes and public reads share it.
    options.update(
        pool_size=max(1, int(settings.api_db_pool_size)),
        max_overflow=max(0, int(settings.api_db_max_overflow)),
        pool_timeout=30,
        pool_recycle=1800,
    )
    return options


def _build_engine(settings: Settings) -> AsyncEngine:
    built = create_async_engine(settings.database_url, **_engine_options(settings))
    if _is_sqlite(settings.database_url):

        @event.listens_for(built.sync_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
            # Cascades from sites to their content rows need foreign keys on per connection.
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return built


engine = _build_engine(get_settings())
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def pool_stats() -> dict[str, int | None]:
    # Counters for /health; pools without them (SQLite) report None.
    pool = engine.sync_engine.pool
    counters = {"size": "size", "checked_out": "checkedout"}
    stats: dict[str, int | None] = {}
    for key, attr in counters.items():
        reader = getattr(pool, attr, None)
        stats[key] = int(reader()) if callable(reader) else None
    return stats
