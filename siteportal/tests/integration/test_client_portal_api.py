from __future__ import annotations

import pytest

from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos import content as content_repo
from siteportal.tests.utils.portal import (
    ADMIN_PASSWORD,
    CLIENT_PASSWORD,
    api_client,
    bearer,
    build_harness,
    login,
    seed_admin,
    seed_client,
    seed_collection,
    seed_site,
)


async def _client_session(client, email: str = "owner@harbor.example.org") -> tuple[str, dict[str, str]]:
    client_id = await seed_client(email=email)
    data = await login(client, email, CLIENT_PASSWORD, "client")
    return client_id, bearer(data["access_token"])


def _collection_url(site_slug: str, collection_key: str) -> str:
    return f"/api/client/sites/{site_slug}/collections/{collection_key}"


def _items_url(site_slug: str, collection_key: str) -> str:
    return f"{_collection_url(site_slug, collection_key)}/items"


@pytest.mark.asyncio
async def test_clients_only_reach_their_own_sites() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        other_id = await seed_client(email="rival@harbor.example.org")
        await seed_site(slug="mine", client_id=client_id)
        await seed_site(slug="theirs", client_id=other_id)

        own = await client.get("/api/client/sites/mine", headers=headers)
        foreign = await client.get("/api/client/sites/theirs", headers=headers)
        unknown = await client.get("/api/client/sites/no-such-site", headers=headers)
        listing = await client.get("/api/client/sites", headers=headers)

    assert own.status_code == 200
    assert own.json()["data"]["permissions"]["can_edit_text"] is True
    assert own.json()["data"]["permissions"]["can_delete_collection_items"] is False
    assert "api_key" not in own.json()["data"]
    assert foreign.status_code == 403
    assert foreign.json() == {"error": "Access denied to this site"}
    assert unknown.status_code == 403
    assert unknown.json() == {"error": "Site not found"}
    assert [site["slug"] for site in listing.json()["data"]] == ["mine"]

    denied = harness.sink.of_type("permission_denied")
    assert [event.details["slug"] for event in denied] == ["theirs", "no-such-site"]
    assert all(event.user_id == client_id for event in denied)


@pytest.mark.asyncio
async def test_linking_a_site_grants_access() -> None:
    harness = build_harness()
    admin_id = await seed_admin(email="ops@example.com")
    site = await seed_site(slug="late-link", created_by=admin_id)
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        before = await client.get("/api/client/sites/late-link", headers=headers)
        admin = await login(client, "ops@example.com", ADMIN_PASSWORD, "admin")
        linked = await client.patch(
            f"/api/admin/sites/{site.id}",
            json={"client_id": client_id},
            headers=bearer(admin["access_token"]),
        )
        after = await client.get("/api/client/sites/late-link", headers=headers)
    assert before.status_code == 403
    assert linked.status_code == 200
    assert after.status_code == 200


@pytest.mark.asyncio
async def test_capability_flags_gate_field_edits() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        site = await seed_site(slug="locked-text", client_id=client_id, permissions={"can_edit_text": False})
        async with SessionLocal() as session:
            await content_repo.create_text_content(session, site.id, content_key="hero_title", label="Hero")
            await session.commit()
        response = await client.put(
            "/api/client/sites/locked-text/text/hero_title", json={"content": "New"}, headers=headers
        )
    assert response.status_code == 403
    assert response.json() == {"error": "You do not have permission to edit text content"}
    denied = harness.sink.of_type("permission_denied")
    assert len(denied) == 1
    assert denied[0].details["reason"] == "You do not have permission to edit text content"


@pytest.mark.asyncio
async def test_text_and_business_edits_are_sanitized() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        site = await seed_site(slug="clean-site", client_id=client_id)
        async with SessionLocal() as session:
            await content_repo.create_text_content(session, site.id, content_key="hero_title", label="Hero")
            await content_repo.create_text_content(
                session, site.id, content_key="about", label="About", content_type="richtext"
            )
            await session.commit()

        plain = await client.put(
            "/api/client/sites/clean-site/text/hero_title",
            json={"content": "<script>alert(1)</script>Fresh\x00 bread"},
            headers=headers,
        )
        rich = await client.put(
            "/api/client/sites/clean-site/text/about",
            json={"content": "<p>Since <strong>1990</strong></p>"},
            headers=headers,
        )
        missing = await client.put(
            "/api/client/sites/clean-site/text/nope", json={"content": "x"}, headers=headers
        )
        business = await client.put(
            "/api/client/sites/clean-site/business-info",
            json={
                "business_name": "<b>Harbor</b> Bakery",
                "address": {"city": "Portland"},
                "social": {"instagram": "<i>@harbor</i>"},
            },
            headers=headers,
        )
        stored = await client.get("/api/client/sites/clean-site/business-info", headers=headers)
    assert plain.json()["data"]["content"] == "alert(1)Fresh bread"
    assert rich.json()["data"]["content"] == "<p>Since <strong>1990</strong></p>"
    assert missing.status_code == 404
    assert missing.json() == {"error": "Text field not found"}
    assert business.status_code == 200
    info = business.json()["data"]
    assert info["business_name"] == "Harbor Bakery"
    assert info["address"]["city"] == "Portland"
    assert info["address"]["country"] == "USA"
    assert info["social"] == {"instagram": "@harbor"}
    assert stored.json()["data"] == info


@pytest.mark.asyncio
async def test_item_mutations_require_site_and_collection_flags() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        site = await seed_site(slug="items-site", client_id=client_id)
        closed = await seed_collection(site.id, collection_key="closed", can_add=False)
        open_collection = await seed_collection(site.id, collection_key="menu")
        closed_url = _items_url("items-site", closed.collection_key)
        open_url = _items_url("items-site", open_collection.collection_key)

        refused_add = await client.post(closed_url, json={"data": {"title": "x"}}, headers=headers)
        created = await client.post(open_url, json={"data": {"title": "<em>Soup</em>"}}, headers=headers)
        item_id = created.json()["data"]["id"]
        # Collection allows deletes but the site flag defaults to off.
        refused_delete = await client.delete(f"{open_url}/{item_id}", headers=headers)
        updated = await client.put(
            f"{open_url}/{item_id}", json={"is_visible": False}, headers=headers
        )
        fetched = await client.get(f"{open_url}/{item_id}", headers=headers)
        missing = await client.put(f"{open_url}/not-an-item", json={"is_visible": True}, headers=headers)
        # Items are addressed through the key of the collection that holds them.
        wrong_collection = await client.get(f"{closed_url}/{item_id}", headers=headers)

    assert refused_add.status_code == 403
    assert refused_add.json() == {"error": "Adding items to this collection is not allowed"}
    assert created.status_code == 201
    assert created.json()["data"]["data"] == {"title": "Soup"}
    assert refused_delete.status_code == 403
    assert refused_delete.json() == {"error": "You do not have permission to delete collection items"}
    assert updated.status_code == 200
    assert updated.json()["data"]["is_visible"] is False
    assert fetched.json()["data"] == updated.json()["data"]
    assert missing.status_code == 404
    assert missing.json() == {"error": "Item not found"}
    assert wrong_collection.status_code == 404


@pytest.mark.asyncio
async def test_delete_succeeds_once_both_layers_allow_it() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        site = await seed_site(
            slug="delete-site", client_id=client_id, permissions={"can_delete_collection_items": True}
        )
        collection = await seed_collection(site.id, collection_key="menu")
        url = _items_url("delete-site", collection.collection_key)
        item_id = (await client.post(url, json={"data": {"title": "Tea"}}, headers=headers)).json()["data"]["id"]
        deleted = await client.delete(f"{url}/{item_id}", headers=headers)
        remaining = await client.get(url, headers=headers)
    assert deleted.status_code == 200
    assert deleted.json() == {"message": "Item deleted"}
    assert remaining.json()["data"] == []


@pytest.mark.asyncio
async def test_reorder_and_capacity_through_the_api() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        site = await seed_site(slug="order-site", client_id=client_id)
        collection = await seed_collection(site.id, collection_key="team", max_items=3)
        url = _items_url("order-site", collection.collection_key)
        reorder_url = _collection_url("order-site", collection.collection_key) + "/reorder"
        ids = [
            (await client.post(url, json={"data": {"n": n}}, headers=headers)).json()["data"]["id"]
            for n in range(3)
        ]
        full = await client.post(url, json={"data": {"n": 3}}, headers=headers)
        reordered = await client.put(
            reorder_url, json={"item_ids": [ids[2], ids[0], ids[1]]}, headers=headers
        )
        foreign = await client.put(reorder_url, json={"item_ids": ["elsewhere"]}, headers=headers)
        empty = await client.put(reorder_url, json={"item_ids": []}, headers=headers)

    assert full.status_code == 400
    assert full.json() == {"error": "Collection is at maximum capacity (3 items)"}
    assert reordered.status_code == 200
    assert [(item["id"], item["sort_order"]) for item in reordered.json()["data"]] == [
        (ids[2], 0),
        (ids[0], 1),
        (ids[1], 2),
    ]
    assert foreign.status_code == 400
    assert empty.status_code == 400
    assert empty.json()["error"].startswith("item_ids:")


@pytest.mark.asyncio
async def test_publish_versions_and_history() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        await seed_site(slug="pub-site", client_id=client_id)
        first = await client.post("/api/client/sites/pub-site/publish", json={"notes": "Launch"}, headers=headers)
        second = await client.post("/api/client/sites/pub-site/publish", json={}, headers=headers)
        history = await client.get("/api/client/sites/pub-site/publish-history", headers=headers)
        activity = await client.get("/api/client/sites/pub-site/activity", headers=headers)

    assert first.status_code == 200, first.text
    assert first.json()["data"]["version_number"] == 1
    assert second.json()["data"]["version_number"] == 2
    # The first publish time sticks across republishes.
    assert first.json()["data"]["published_at"] == second.json()["data"]["published_at"]
    assert second.json()["data"]["site"]["status"] == "published"
    rows = history.json()["data"]
    assert [row["version_number"] for row in rows] == [2, 1]
    assert rows[1]["notes"] == "Launch"
    assert rows[0]["publisher_type"] == "client"
    actions = [entry["action"] for entry in activity.json()["data"]]
    assert actions.count("publish_site") == 2


@pytest.mark.asyncio
async def test_publish_needs_the_flag_and_a_live_site() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        client_id, headers = await _client_session(client)
        await seed_site(slug="no-publish", client_id=client_id, permissions={"can_publish": False})
        await seed_site(slug="old-site", client_id=client_id, status="archived")
        refused = await client.post("/api/client/sites/no-publish/publish", json={}, headers=headers)
        archived = await client.post("/api/client/sites/old-site/publish", json={}, headers=headers)
        archived_edit = await client.put(
            "/api/client/sites/old-site/business-info", json={"phone": "555"}, headers=headers
        )
    assert refused.status_code == 403
    assert refused.json() == {"error": "You do not have permission to publish changes"}
    assert archived.status_code == 400
    assert archived.json() == {"error": "Archived sites cannot be published"}
    assert archived_edit.status_code == 400
    assert archived_edit.json() == {"error": "Archived sites cannot be modified"}


@pytest.mark.asyncio
async def test_admins_bypass_capability_flags() -> None:
    harness = build_harness()
    await seed_admin(email="ops@example.com")
    site = await seed_site(
        slug="admin-edit",
        permissions={"can_edit_text": False, "can_publish": False},
    )
    async with SessionLocal() as session:
        await content_repo.create_text_content(session, site.id, content_key="hero_title", label="Hero")
        await session.commit()
    async with api_client(harness.app) as client:
        admin = await login(client, "ops@example.com", ADMIN_PASSWORD, "admin")
        headers = bearer(admin["access_token"])
        edited = await client.put(
            "/api/client/sites/admin-edit/text/hero_title", json={"content": "Hello"}, headers=headers
        )
        published = await client.post("/api/client/sites/admin-edit/publish", json={}, headers=headers)
        activity = await client.get("/api/client/sites/admin-edit/activity", headers=headers)
        me = await client.get("/api/client/me", headers=headers)
    assert edited.status_code == 200
    assert published.status_code == 200
    assert {entry["user_type"] for entry in activity.json()["data"]} == {"admin"}
    # Client-only endpoints still require a client account.
    assert me.status_code == 403
    assert me.json() == {"error": "Client access required"}
