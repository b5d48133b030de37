from __future__ import annotations

from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.core.errors import NotFoundError, ValidationError
from siteportal.domain.models import Collection, CollectionItem, ImageSlot, TextContent


async def list_text_content(session: AsyncSession, site_id: str) -> list[TextContent]:
    result = await session.execute(
        select(TextContent)
        .where(TextContent.site_id == site_id)
        .order_by(TextContent.sort_order, TextContent.content_key)
    )
    return list(result.scalars().all())


async def get_text_content(session: AsyncSession, site_id: str, content_key: str) -> TextContent | None:
    result = await session.execute(
        select(TextContent).where(
            TextContent.site_id == site_id, TextContent.content_key == content_key
        )
    )
    return result.scalar_one_or_none()


async def create_text_content(session: AsyncSession, site_id: str, **fields: Any) -> TextContent:
    row = TextContent(id=uuid4().hex, site_id=site_id, **fields)
    session.add(row)
    await session.flush()
    return row


async def get_text_field(session: AsyncSession, site_id: str, field_id: str) -> TextContent | None:
    result = await session.execute(
        select(TextContent).where(TextContent.site_id == site_id, TextContent.id == field_id)
    )
    return result.scalar_one_or_none()


async def delete_text_content(session: AsyncSession, row: TextContent) -> None:
    await session.delete(row)
    await session.flush()


async def update_text_value(session: AsyncSession, row: TextContent, content: str) -> TextContent:
    # Field definitions bound the stored length; the value itself is already sanitised.
    if row.max_length is not None and len(content) > row.max_length:
        raise ValidationError(f"Content exceeds maximum length of {row.max_length} characters")
    row.content = content
    await session.flush()
    return row


async def list_images(session: AsyncSession, site_id: str) -> list[ImageSlot]:
    result = await session.execute(
        select(ImageSlot)
        .where(ImageSlot.site_id == site_id)
        .order_by(ImageSlot.sort_order, ImageSlot.image_key)
    )
    return list(result.scalars().all())


async def get_image(session: AsyncSession, site_id: str, image_key: str) -> ImageSlot | None:
    result = await session.execute(
        select(ImageSlot).where(ImageSlot.site_id == site_id, ImageSlot.image_key == image_key)
    )
    return result.scalar_one_or_none()


async def create_image(session: AsyncSession, site_id: str, **fields: Any) -> ImageSlot:
    row = ImageSlot(id=uuid4().hex, site_id=site_id, **fields)
    session.add(row)
    await session.flush()
    return row


async def update_image(
    session: AsyncSession, row: ImageSlot, *, url: str | None, alt_text: str | None
) -> ImageSlot:
    row.url = url
    if alt_text is not None:
        row.alt_text = alt_text
    await session.flush()
    return row


async def list_collections(session: AsyncSession, site_id: str) -> list[Collection]:
    result = await session.execute(
        select(Collection)
        .where(Collection.site_id == site_id)
        .order_by(Collection.sort_order, Collection.collection_key)
    )
    return list(result.scalars().all())


async def get_collection(session: AsyncSession, site_id: str, collection_key: str) -> Collection | None:
    # Keys are unique per site only, so the site always scopes the lookup.
    result = await session.execute(
        select(Collection).where(Collection.site_id == site_id, Collection.collection_key == collection_key)
    )
    return result.scalar_one_or_none()


async def create_collection(session: AsyncSession, site_id: str, **fields: Any) -> Collection:
    row = Collection(id=uuid4().hex, site_id=site_id, **fields)
    session.add(row)
    await session.flush()
    return row


async def list_items(
    session: AsyncSession, collection_id: str, *, visible_only: bool = False
) -> list[CollectionItem]:
    stmt = select(CollectionItem).where(CollectionItem.collection_id == collection_id)
    if visible_only:
        stmt = stmt.where(CollectionItem.is_visible.is_(True))
    stmt = stmt.order_by(CollectionItem.sort_order, CollectionItem.created_at, CollectionItem.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_item(session: AsyncSession, collection_id: str, item_id: str) -> CollectionItem | None:
    result = await session.execute(
        select(CollectionItem).where(
            CollectionItem.id == item_id, CollectionItem.collection_id == collection_id
        )
    )
    return result.scalar_one_or_none()


async def count_items(session: AsyncSession, collection_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(CollectionItem).where(
            CollectionItem.collection_id == collection_id
        )
    )
    return int(result.scalar_one())


async def create_item(
    session: AsyncSession,
    collection: Collection,
    *,
    data: dict[str, Any],
    is_visible: bool = True,
) -> CollectionItem:
    # Enforce the optional cap, then append after the current last position.
    if collection.max_items is not None:
        current = await count_items(session, collection.id)
        if current >= collection.max_items:
            raise ValidationError(
                f"Collection is at maximum capacity ({collection.max_items} items)"
            )
    result = await session.execute(
        select(func.max(CollectionItem.sort_order)).where(
            CollectionItem.collection_id == collection.id
        )
    )
    last = result.scalar_one_or_none()
    item = CollectionItem(
        id=uuid4().hex,
        collection_id=collection.id,
        data=data,
        sort_order=0 if last is None else int(last) + 1,
        is_visible=is_visible,
    )
    session.add(item)
    await session.flush()
    return item


async def update_item(
    session: AsyncSession,
    item: CollectionItem,
    *,
    data: dict[str, Any] | None = None,
    is_visible: bool | None = None,
) -> CollectionItem:
    if data is not None:
        item.data = data
    if is_visible is not None:
        item.is_visible = is_visible
    await session.flush()
    return item


async def delete_item(session: AsyncSession, item: CollectionItem) -> None:
    await session.delete(item)
    await session.flush()


async def reorder_items(
    session: AsyncSession, collection_id: str, item_ids: list[str]
) -> list[CollectionItem]:
    # Validate every id before writing so a bad id leaves the existing order untouched.
    if len(set(item_ids)) != len(item_ids):
        raise ValidationError("Duplicate item ids in reorder request")
    items = {item.id: item for item in await list_items(session, collection_id)}
    for item_id in item_ids:
        if item_id not in items:
            raise ValidationError(f"Item {item_id} does not belong to this collection")
    for index, item_id in enumerate(item_ids):
        items[item_id].sort_order = index
    await session.flush()
    return [items[item_id] for item_id in item_ids]


async def require_collection(session: AsyncSession, site_id: str, collection_key: str) -> Collection:
    collection = await get_collection(session, site_id, collection_key)
    if collection is None:
        raise NotFoundError("Collection not found")
    return collection
