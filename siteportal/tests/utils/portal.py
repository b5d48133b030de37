from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from siteportal.apps.api.main import create_app
from siteportal.apps.api.rate_limit import CounterResult, RateLimiter
from siteportal.domain.models import Collection, Site
from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos import content as content_repo
from siteportal.persistence.repos import sites as sites_repo
from siteportal.persistence.repos.principals import create_admin, create_client
from siteportal.services.auth.identity import LocalIdentityProvider
from siteportal.services.security_log import SecurityEvent, SecurityEventLog


ADMIN_PASSWORD = "Gr@ph1te-Moon!Q7"
CLIENT_PASSWORD = "N3w-Harbor!Lamp9"


class InMemoryCounterBackend:
    """Sliding-window log with the same contract as the Redis script."""

    def __init__(self) -> None:
        self.hits: dict[str, list[int]] = defaultdict(list)

    async def hit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> CounterResult:
        entries = [ts for ts in self.hits[key] if ts > now_ms - window_ms]
        allowed = len(entries) < limit
        if allowed:
            entries.append(now_ms)
        self.hits[key] = entries
        reset_ms = (entries[0] if entries else now_ms) + window_ms
        return CounterResult(allowed=allowed, count=len(entries), reset_ms=reset_ms)


class FailingCounterBackend:
    async def hit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> CounterResult:
        raise ConnectionError("counter service unreachable")


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[SecurityEvent] = []

    async def __call__(self, event: SecurityEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[SecurityEvent]:
        return [event for event in self.events if event.event_type == event_type]


@dataclass
class ResetOutbox:
    links: list[tuple[str, str]] = field(default_factory=list)

    async def __call__(self, email: str, link: str) -> None:
        self.links.append((email, link))

    def last_token(self) -> str:
        return self.links[-1][1].split("token=", 1)[1]


@dataclass
class PortalHarness:
    app: FastAPI
    sink: RecordingSink
    counters: InMemoryCounterBackend
    outbox: ResetOutbox


def build_harness() -> PortalHarness:
    # Inject test doubles for every process-owned handle.
    sink = RecordingSink()
    counters = InMemoryCounterBackend()
    outbox = ResetOutbox()
    app = create_app(
        identity=LocalIdentityProvider(reset_sender=outbox),
        security_log=SecurityEventLog(sink=sink),
        rate_limiter=RateLimiter(counters),
    )
    return PortalHarness(app=app, sink=sink, counters=counters, outbox=outbox)


def api_client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def seed_admin(
    *,
    email: str | None = None,
    password: str = ADMIN_PASSWORD,
    role: str = "admin",
    name: str = "Test Admin",
) -> str:
    admin_id = uuid4().hex
    email = email or f"admin-{admin_id[:8]}@example.com"
    async with SessionLocal() as session:
        await LocalIdentityProvider().create_user(session, email=email, password=password, user_id=admin_id)
        await create_admin(session, admin_id=admin_id, email=email, name=name, role=role)
        await session.commit()
    return admin_id


async def seed_client(
    *,
    email: str | None = None,
    password: str = CLIENT_PASSWORD,
    name: str = "Test Client",
) -> str:
    client_id = uuid4().hex
    email = email or f"client-{client_id[:8]}@example.com"
    async with SessionLocal() as session:
        await LocalIdentityProvider().create_user(session, email=email, password=password, user_id=client_id)
        await create_client(session, client_id=client_id, email=email, name=name)
        await session.commit()
    return client_id


async def seed_site(
    *,
    created_by: str | None = None,
    client_id: str | None = None,
    slug: str | None = None,
    status: str = "draft",
    permissions: dict[str, bool] | None = None,
) -> Site:
    async with SessionLocal() as session:
        site = await sites_repo.create_site(
            session,
            name="Test Site",
            slug=slug or f"site-{uuid4().hex[:8]}",
            created_by=created_by,
            client_id=client_id,
        )
        if status != "draft":
            await sites_repo.update_site(session, site, status=status)
        if permissions:
            await sites_repo.upsert_permissions(session, site.id, permissions)
        await session.commit()
    return site


async def seed_collection(site_id: str, **fields: Any) -> Collection:
    fields.setdefault("collection_key", f"col_{uuid4().hex[:8]}")
    fields.setdefault("label", "Services")
    async with SessionLocal() as session:
        collection = await content_repo.create_collection(session, site_id, **fields)
        await session.commit()
    return collection


async def login(client: AsyncClient, email: str, password: str, user_type: str) -> dict[str, Any]:
    response = await client.post(
        "/api/auth/login",
        json={"email": email, "password": password, "user_type": user_type},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


def bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}
