from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.domain.models import ActivityLog, PublishHistory, SecurityLog


async def record_activity(
    session: AsyncSession,
    *,
    site_id: str | None,
    user_id: str | None,
    user_type: str | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    changes: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ActivityLog:
    # Activity rows are advisory; callers commit them with the mutation they describe.
    row = ActivityLog(
        id=uuid4().hex,
        site_id=site_id,
        user_id=user_id,
        user_type=user_type,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        changes=changes,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(row)
    await session.flush()
    return row


async def list_activity(
    session: AsyncSession,
    *,
    site_id: str | None = None,
    user_id: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[ActivityLog]:
    stmt = select(ActivityLog)
    if site_id:
        stmt = stmt.where(ActivityLog.site_id == site_id)
    if user_id:
        stmt = stmt.where(ActivityLog.user_id == user_id)
    stmt = stmt.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def next_publish_version(session: AsyncSession, site_id: str) -> int:
    result = await session.execute(
        select(func.max(PublishHistory.version_number)).where(PublishHistory.site_id == site_id)
    )
    current = result.scalar_one_or_none()
    return 1 if current is None else int(current) + 1


async def record_publish(
    session: AsyncSession,
    *,
    site_id: str,
    published_by: str,
    publisher_type: str,
    content_snapshot: dict[str, Any],
    notes: str | None = None,
) -> PublishHistory:
    # Version numbers are unique per site; a concurrent publish fails on the constraint.
    row = PublishHistory(
        id=uuid4().hex,
        site_id=site_id,
        published_by=published_by,
        publisher_type=publisher_type,
        version_number=await next_publish_version(session, site_id),
        content_snapshot=content_snapshot,
        notes=notes,
    )
    session.add(row)
    await session.flush()
    return row


async def list_publish_history(session: AsyncSession, site_id: str, *, limit: int = 20) -> list[PublishHistory]:
    result = await session.execute(
        select(PublishHistory)
        .where(PublishHistory.site_id == site_id)
        .order_by(PublishHistory.version_number.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_security_logs(
    session: AsyncSession,
    *,
    event_type: str | None = None,
    user_id: str | None = None,
    severity: str | None = None,
    ip_address: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[SecurityLog], int]:
    # Return one page plus the total match count for pagination.
    filters = []
    if event_type:
        filters.append(SecurityLog.event_type == event_type)
    if user_id:
        filters.append(SecurityLog.user_id == user_id)
    if severity:
        filters.append(SecurityLog.severity == severity)
    if ip_address:
        filters.append(SecurityLog.ip_address == ip_address)
    if from_date:
        filters.append(SecurityLog.created_at >= from_date)
    if to_date:
        filters.append(SecurityLog.created_at <= to_date)

    total_result = await session.execute(
        select(func.count()).select_from(SecurityLog).where(*filters)
    )
    stmt = (
        select(SecurityLog)
        .where(*filters)
        .order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total_result.scalar_one())
