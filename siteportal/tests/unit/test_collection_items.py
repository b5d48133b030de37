from __future__ import annotations

import pytest

from siteportal.core.errors import NotFoundError, ValidationError
from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos import content as content_repo
from siteportal.tests.utils.portal import seed_collection, seed_site


@pytest.mark.asyncio
async def test_items_append_in_order_and_respect_cap() -> None:
    site = await seed_site()
    collection = await seed_collection(site.id, max_items=2)
    async with SessionLocal() as session:
        first = await content_repo.create_item(session, collection, data={"title": "One"})
        second = await content_repo.create_item(session, collection, data={"title": "Two"})
        with pytest.raises(ValidationError) as excinfo:
            await content_repo.create_item(session, collection, data={"title": "Three"})
        await session.commit()
    assert (first.sort_order, second.sort_order) == (0, 1)
    assert excinfo.value.user_message == "Collection is at maximum capacity (2 items)"


@pytest.mark.asyncio
async def test_reorder_assigns_positions_by_index() -> None:
    site = await seed_site()
    collection = await seed_collection(site.id)
    async with SessionLocal() as session:
        ids = [
            (await content_repo.create_item(session, collection, data={"n": n})).id for n in range(3)
        ]
        await session.commit()

    async with SessionLocal() as session:
        await content_repo.reorder_items(session, collection.id, [ids[2], ids[0], ids[1]])
        await session.commit()
    async with SessionLocal() as session:
        items = await content_repo.list_items(session, collection.id)
    assert [item.id for item in items] == [ids[2], ids[0], ids[1]]
    assert [item.sort_order for item in items] == [0, 1, 2]


@pytest.mark.asyncio
async def test_reorder_rejects_foreign_and_duplicate_ids_without_writing() -> None:
    site = await seed_site()
    collection = await seed_collection(site.id)
    other = await seed_collection(site.id)
    async with SessionLocal() as session:
        mine = (await content_repo.create_item(session, collection, data={})).id
        theirs = (await content_repo.create_item(session, other, data={})).id
        await session.commit()

    async with SessionLocal() as session:
        with pytest.raises(ValidationError) as excinfo:
            await content_repo.reorder_items(session, collection.id, [mine, theirs])
        assert excinfo.value.user_message == f"Item {theirs} does not belong to this collection"
        with pytest.raises(ValidationError):
            await content_repo.reorder_items(session, collection.id, [mine, mine])


@pytest.mark.asyncio
async def test_visible_only_listing_and_collection_scoping() -> None:
    site = await seed_site()
    other_site = await seed_site()
    collection = await seed_collection(site.id)
    async with SessionLocal() as session:
        await content_repo.create_item(session, collection, data={"a": 1})
        await content_repo.create_item(session, collection, data={"a": 2}, is_visible=False)
        await session.commit()
        visible = await content_repo.list_items(session, collection.id, visible_only=True)
        assert [item.data for item in visible] == [{"a": 1}]
        # A collection key is only reachable through the site that owns it.
        with pytest.raises(NotFoundError):
            await content_repo.require_collection(session, other_site.id, collection.collection_key)


@pytest.mark.asyncio
async def test_text_value_respects_max_length() -> None:
    site = await seed_site()
    async with SessionLocal() as session:
        row = await content_repo.create_text_content(
            session, site.id, content_key="hero_title", label="Hero title", max_length=10
        )
        await content_repo.update_text_value(session, row, "Short")
        with pytest.raises(ValidationError):
            await content_repo.update_text_value(session, row, "Far too long for this")
        await session.commit()
    assert row.content == "Short"
