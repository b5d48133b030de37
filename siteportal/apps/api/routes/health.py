from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.deps import get_db, get_rate_limiter
from siteportal.apps.api.rate_limit import RateLimiter
from siteportal.persistence.db import pool_stats


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Any:
    # Report the store reachability and pool counters; the limiter is advisory and never fails health.
    database_ok = True
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        database_ok = False
        logger.warning("health_db_unreachable error=%s", type(exc).__name__)
    payload = {
        "status": "ok" if database_ok else "degraded",
        "database": {"reachable": database_ok, "pool": pool_stats()},
        "rate_limiter": {"backend": limiter.backend is not None},
    }
    return JSONResponse(payload, status_code=200 if database_ok else 503)
