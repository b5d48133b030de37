from __future__ import annotations

import pytest

from siteportal.core.config import get_settings
from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos import content as content_repo
from siteportal.persistence.repos import sites as sites_repo
from siteportal.tests.utils.portal import api_client, build_harness, seed_collection, seed_site


async def _published_site_with_content():
    site = await seed_site(slug="harbor-bakery", status="published")
    collection = await seed_collection(site.id, collection_key="services", label="Services")
    async with SessionLocal() as session:
        await sites_repo.update_business_info(
            session,
            site.id,
            {"business_name": "Harbor Bakery", "phone": "555-0100", "address_city": "Portland"},
        )
        await content_repo.create_text_content(
            session, site.id, content_key="hero_title", label="Hero", content="Fresh bread daily"
        )
        await content_repo.create_image(
            session, site.id, image_key="hero", label="Hero image", url="https://cdn.test/hero.jpg", alt_text="Loaves"
        )
        visible = await content_repo.create_item(
            session, collection, data={"title": "Catering", "id": "spoofed"}
        )
        await content_repo.create_item(session, collection, data={"title": "Draft"}, is_visible=False)
        await session.commit()
    return site, visible


@pytest.mark.asyncio
async def test_preflight_allows_any_origin() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        response = await client.options("/api/public/sites/anything/content")
    assert response.status_code == 204
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Access-Control-Allow-Methods"] == "GET, OPTIONS"
    assert "x-api-key" in response.headers["Access-Control-Allow-Headers"]
    assert response.headers["Access-Control-Max-Age"] == "86400"


@pytest.mark.asyncio
async def test_missing_key_and_malformed_slug_are_rejected_early() -> None:
    harness = build_harness()
    async with api_client(harness.app) as client:
        missing = await client.get("/api/public/sites/harbor-bakery/content")
        malformed = await client.get("/api/public/sites/Bad_Slug/content", headers={"X-API-Key": "k"})
    assert missing.status_code == 401
    assert missing.json() == {"error": "API key required"}
    assert malformed.status_code == 400
    assert malformed.json() == {"error": "Invalid site identifier"}
    assert harness.sink.of_type("invalid_api_key") == []


@pytest.mark.asyncio
async def test_wrong_key_and_unpublished_site_look_identical() -> None:
    harness = build_harness()
    published = await seed_site(slug="open-site", status="published")
    draft = await seed_site(slug="draft-site")
    async with api_client(harness.app) as client:
        wrong_key = await client.get(
            "/api/public/sites/open-site/content", headers={"X-API-Key": "not-the-key-at-all"}
        )
        unpublished = await client.get(
            "/api/public/sites/draft-site/content", headers={"X-API-Key": draft.api_key}
        )
        absent = await client.get(
            "/api/public/sites/ghost-site/content", headers={"X-API-Key": published.api_key}
        )
    assert wrong_key.status_code == unpublished.status_code == absent.status_code == 404
    assert wrong_key.content == unpublished.content == absent.content
    assert wrong_key.json() == {"error": "Site not found or invalid API key"}

    # Failed key lookups are security events; an unpublished site with a valid key is not.
    # The key itself is never stored whole.
    events = harness.sink.of_type("invalid_api_key")
    assert [event.details["slug"] for event in events] == ["open-site", "ghost-site"]
    assert events[0].details == {"slug": "open-site", "key_prefix": "not-the-"}
    assert all(event.severity == "warning" for event in events)
    assert published.api_key not in str(events[1].details)
    assert events[1].details["key_prefix"] == published.api_key[:8]


@pytest.mark.asyncio
async def test_published_content_shape_and_headers() -> None:
    harness = build_harness()
    site, visible = await _published_site_with_content()
    async with api_client(harness.app) as client:
        response = await client.get(
            "/api/public/sites/harbor-bakery/content", headers={"X-API-Key": site.api_key}
        )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["site"] == {"name": "Test Site", "slug": "harbor-bakery"}
    assert body["business"]["business_name"] == "Harbor Bakery"
    assert body["business"]["address"]["city"] == "Portland"
    assert body["business"]["address"]["country"] == "USA"
    assert body["text"] == {"hero_title": "Fresh bread daily"}
    assert body["images"] == {"hero": {"url": "https://cdn.test/hero.jpg", "alt": "Loaves"}}
    # Hidden items are omitted and the stored id wins over a payload "id".
    assert body["collections"] == {"services": [{"title": "Catering", "id": visible.id}]}

    assert response.headers["Cache-Control"] == "public, s-maxage=60, stale-while-revalidate=300"
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["X-RateLimit-Limit"] == "100"
    assert response.headers["X-RateLimit-Remaining"] == "99"
    assert response.headers["X-Response-Time"].endswith("ms")


@pytest.mark.asyncio
async def test_public_requests_are_limited_per_address(monkeypatch) -> None:
    monkeypatch.setenv("RL_PUBLIC_REQUESTS", "2")
    get_settings.cache_clear()
    harness = build_harness()
    site = await seed_site(slug="busy-site", status="published")
    headers = {"X-API-Key": site.api_key, "X-Forwarded-For": "198.51.100.7"}
    async with api_client(harness.app) as client:
        statuses = [
            (await client.get("/api/public/sites/busy-site/content", headers=headers)).status_code
            for _ in range(3)
        ]
        other = await client.get(
            "/api/public/sites/busy-site/content",
            headers={"X-API-Key": site.api_key, "X-Forwarded-For": "198.51.100.8"},
        )
    assert statuses == [200, 200, 429]
    assert other.status_code == 200
    limited = harness.sink.of_type("rate_limit_exceeded")
    assert len(limited) == 1
    assert limited[0].severity == "warning"
    assert limited[0].ip_address == "198.51.100.7"
