from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from siteportal.domain.models import BusinessInfo, Site
from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos import content as content_repo
from siteportal.persistence.repos.sites import get_business_info


def serialize_business(info: BusinessInfo | None) -> dict[str, Any] | None:
    if info is None:
        return None
    return {
        "business_name": info.business_name,
        "phone": info.phone,
        "email": info.email,
        "address": {
            "street": info.address_street,
            "city": info.address_city,
            "state": info.address_state,
            "zip": info.address_zip,
            "country": info.address_country,
        },
        "hours": info.hours or {},
        "social": info.social_links or {},
        "logo_url": info.logo_url,
    }


async def _business(session: AsyncSession, site_id: str) -> dict[str, Any] | None:
    return serialize_business(await get_business_info(session, site_id))


async def _text(session: AsyncSession, site_id: str) -> dict[str, str]:
    return {row.content_key: row.content for row in await content_repo.list_text_content(session, site_id)}


async def _collections(session: AsyncSession, site_id: str) -> dict[str, list[dict[str, Any]]]:
    collections: dict[str, list[dict[str, Any]]] = {}
    for collection in await content_repo.list_collections(session, site_id):
        items = await content_repo.list_items(session, collection.id, visible_only=True)
        # Payload fields never shadow the item id.
        collections[collection.collection_key] = [{**(item.data or {}), "id": item.id} for item in items]
    return collections


async def _images(session: AsyncSession, site_id: str) -> dict[str, dict[str, str | None]]:
    return {
        row.image_key: {"url": row.url, "alt": row.alt_text}
        for row in await content_repo.list_images(session, site_id)
    }


async def build_site_content(
    site: Site,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> dict[str, Any]:
    """Aggregate the published view of a site.

    The four sections are fetched concurrently, each on its own session,
    since one AsyncSession cannot serve overlapping queries.
    """
    factory = session_factory or SessionLocal

    async def _run(fetch):
        async with factory() as session:
            return await fetch(session, site.id)

    business, text, collections, images = await asyncio.gather(
        _run(_business), _run(_text), _run(_collections), _run(_images)
    )
    return {
        "site": {"name": site.name, "slug": site.slug},
        "business": business,
        "text": text,
        "collections": collections,
        "images": images,
    }
