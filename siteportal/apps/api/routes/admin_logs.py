from __future__ import annotations

from datetime import datetime
import math
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.deps import get_db, rate_limited, require_admin, require_super_admin
from siteportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from siteportal.apps.api.rate_limit import BUCKET_ADMIN
from siteportal.apps.api.response import success_response
from siteportal.apps.api.serializers import activity_payload, security_log_payload
from siteportal.core.errors import ValidationError
from siteportal.persistence.repos import activity as activity_repo
from siteportal.services.auth.principals import AdminPrincipal
from siteportal.services.security_log import EVENT_TYPES


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(BUCKET_ADMIN))],
)


@router.get("/security-logs")
async def list_security_logs(
    event_type: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    severity: Literal["info", "warning", "critical"] | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    ip_address: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    principal: AdminPrincipal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Security logs are restricted to super admins.
    if event_type is not None and event_type not in EVENT_TYPES:
        raise ValidationError(f"Unknown event type: {event_type}")
    rows, total = await activity_repo.list_security_logs(
        db,
        event_type=event_type,
        user_id=user_id,
        severity=severity,
        ip_address=ip_address,
        from_date=from_date,
        to_date=to_date,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return success_response(
        {
            "items": [security_log_payload(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }
    )


@router.get("/activity")
async def list_activity(
    site_id: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await activity_repo.list_activity(
        db, site_id=site_id, user_id=user_id, offset=(page - 1) * limit, limit=limit
    )
    return success_response([activity_payload(row) for row in rows])
