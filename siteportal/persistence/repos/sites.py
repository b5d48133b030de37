from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.domain.models import BusinessInfo, Site, SitePermissionsRow


SITE_STATUSES = ("draft", "published", "archived")

PERMISSION_FLAGS = (
    "can_edit_business_info",
    "can_edit_text",
    "can_edit_images",
    "can_edit_collections",
    "can_add_collection_items",
    "can_delete_collection_items",
    "can_reorder_collection_items",
    "can_publish",
)

# Defaults applied to the permissions row created alongside every site.
DEFAULT_PERMISSION_FLAGS: dict[str, bool] = {
    flag: flag != "can_delete_collection_items" for flag in PERMISSION_FLAGS
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_site_api_key() -> str:
    # Opaque public read key; rotated by regenerate_api_key.
    return str(uuid4())


async def get_site(session: AsyncSession, site_id: str) -> Site | None:
    result = await session.execute(select(Site).where(Site.id == site_id))
    return result.scalar_one_or_none()


async def get_site_by_slug(session: AsyncSession, slug: str) -> Site | None:
    result = await session.execute(select(Site).where(Site.slug == slug))
    return result.scalar_one_or_none()


async def get_site_by_slug_and_api_key(session: AsyncSession, slug: str, api_key: str) -> Site | None:
    # Match both columns in one predicate so a wrong key and a wrong slug look the same.
    result = await session.execute(
        select(Site).where(Site.slug == slug, Site.api_key == api_key)
    )
    return result.scalar_one_or_none()


async def list_sites(
    session: AsyncSession,
    *,
    status: str | None = None,
    client_id: str | None = None,
    include_archived: bool = False,
) -> list[Site]:
    stmt = select(Site)
    if status:
        stmt = stmt.where(Site.status == status)
    elif not include_archived:
        stmt = stmt.where(Site.status != "archived")
    if client_id:
        stmt = stmt.where(Site.client_id == client_id)
    stmt = stmt.order_by(Site.created_at.desc(), Site.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_sites_for_client(session: AsyncSession, client_id: str) -> list[Site]:
    # Clients never see archived sites.
    result = await session.execute(
        select(Site)
        .where(Site.client_id == client_id, Site.status != "archived")
        .order_by(Site.name, Site.id)
    )
    return list(result.scalars().all())


async def create_site(
    session: AsyncSession,
    *,
    name: str,
    slug: str,
    created_by: str | None,
    client_id: str | None = None,
    preview_url: str | None = None,
    custom_domain: str | None = None,
) -> Site:
    # Create the site together with its permissions and business info rows.
    now = _utc_now()
    site = Site(
        id=uuid4().hex,
        name=name,
        slug=slug,
        client_id=client_id,
        created_by=created_by,
        preview_url=preview_url,
        custom_domain=custom_domain,
        status="draft",
        api_key=generate_site_api_key(),
        api_key_created_at=now,
    )
    session.add(site)
    # Flush the site insert before dependents to satisfy FK constraints.
    await session.flush()
    session.add(SitePermissionsRow(id=uuid4().hex, site_id=site.id, **DEFAULT_PERMISSION_FLAGS))
    session.add(BusinessInfo(id=uuid4().hex, site_id=site.id, address_country="USA", hours={}, social_links={}))
    await session.flush()
    return site


async def update_site(session: AsyncSession, site: Site, **fields: Any) -> Site:
    # Only whitelisted columns are writable; status transitions are checked by the caller.
    for key in ("name", "slug", "preview_url", "custom_domain", "client_id"):
        if key in fields:
            setattr(site, key, fields[key])
    if "status" in fields and fields["status"] is not None:
        site.status = fields["status"]
        if site.status == "published" and site.published_at is None:
            site.published_at = _utc_now()
    await session.flush()
    return site


async def archive_site(session: AsyncSession, site: Site) -> Site:
    site.status = "archived"
    await session.flush()
    return site


async def regenerate_api_key(session: AsyncSession, site: Site) -> Site:
    site.api_key = generate_site_api_key()
    site.api_key_created_at = _utc_now()
    await session.flush()
    return site


async def get_permissions_row(session: AsyncSession, site_id: str) -> SitePermissionsRow | None:
    result = await session.execute(
        select(SitePermissionsRow).where(SitePermissionsRow.site_id == site_id)
    )
    return result.scalar_one_or_none()


async def upsert_permissions(
    session: AsyncSession, site_id: str, flags: dict[str, bool]
) -> SitePermissionsRow:
    row = await get_permissions_row(session, site_id)
    if row is None:
        # A missing row was fail-closed; recreate it starting from all-false.
        row = SitePermissionsRow(id=uuid4().hex, site_id=site_id, **{flag: False for flag in PERMISSION_FLAGS})
        session.add(row)
    for flag, value in flags.items():
        if flag in PERMISSION_FLAGS and value is not None:
            setattr(row, flag, bool(value))
    await session.flush()
    return row


async def get_business_info(session: AsyncSession, site_id: str) -> BusinessInfo | None:
    result = await session.execute(select(BusinessInfo).where(BusinessInfo.site_id == site_id))
    return result.scalar_one_or_none()


BUSINESS_INFO_FIELDS = (
    "business_name",
    "phone",
    "email",
    "address_street",
    "address_city",
    "address_state",
    "address_zip",
    "address_country",
    "hours",
    "social_links",
    "logo_url",
)


async def update_business_info(
    session: AsyncSession, site_id: str, fields: dict[str, Any]
) -> BusinessInfo:
    info = await get_business_info(session, site_id)
    if info is None:
        info = BusinessInfo(id=uuid4().hex, site_id=site_id, address_country="USA", hours={}, social_links={})
        session.add(info)
    for key, value in fields.items():
        if key in BUSINESS_INFO_FIELDS:
            setattr(info, key, value)
    await session.flush()
    return info
