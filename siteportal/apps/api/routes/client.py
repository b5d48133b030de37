from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.deps import (
    get_current_principal,
    get_db,
    get_security_log,
    rate_limited,
    require_client,
)
from siteportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from siteportal.apps.api.rate_limit import BUCKET_CLIENT
from siteportal.apps.api.response import message_response, success_response
from siteportal.apps.api.serializers import (
    activity_payload,
    client_payload,
    collection_payload,
    image_payload,
    item_payload,
    publish_payload,
    site_payload,
    text_payload,
)
from siteportal.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from siteportal.domain.models import Site
from siteportal.persistence.repos import activity as activity_repo
from siteportal.persistence.repos import content as content_repo
from siteportal.persistence.repos import sites as sites_repo
from siteportal.persistence.repos.principals import get_client
from siteportal.services.auth.principals import ClientPrincipal, Principal
from siteportal.services.authz.permissions import (
    ItemOperation,
    SitePermissions,
    get_site_permissions,
    require_item_capability,
    require_site_capability,
)
from siteportal.services.authz.site_access import require_site_access_by_slug
from siteportal.services.public_content import build_site_content, serialize_business
from siteportal.services.security.sanitize import sanitize_payload, sanitize_text
from siteportal.services.security_log import SecurityEventLog, get_request_context


router = APIRouter(
    prefix="/api/client",
    tags=["client"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(BUCKET_CLIENT))],
)


class AddressUpdate(BaseModel):
    street: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=50)
    zip: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=100)


class BusinessInfoUpdateRequest(BaseModel):
    business_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    email: EmailStr | None = None
    address: AddressUpdate | None = None
    hours: dict[str, Any] | None = None
    social: dict[str, Any] | None = None
    logo_url: str | None = Field(default=None, max_length=500)


class TextUpdateRequest(BaseModel):
    content: str = Field(max_length=100_000)


class ImageUpdateRequest(BaseModel):
    # Blob-store URL returned by the upload collaborator; null clears the slot.
    url: str | None = Field(default=None, max_length=500)
    alt_text: str | None = Field(default=None, max_length=255)


class ItemCreateRequest(BaseModel):
    data: dict[str, Any]
    is_visible: bool = True


class ItemUpdateRequest(BaseModel):
    data: dict[str, Any] | None = None
    is_visible: bool | None = None


class ReorderRequest(BaseModel):
    item_ids: list[str] = Field(min_length=1)


class PublishRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


async def _site_for(
    request: Request,
    db: AsyncSession,
    principal: Principal,
    slug: str,
    security_log: SecurityEventLog,
) -> Site:
    try:
        return await require_site_access_by_slug(db, principal, slug)
    except ForbiddenError as exc:
        await security_log.log(
            "permission_denied",
            request=request,
            user_id=principal.id,
            user_type=principal.kind,
            details={"slug": slug, "reason": exc.user_message},
        )
        raise


async def _guard(
    request: Request,
    principal: Principal,
    security_log: SecurityEventLog,
    site: Site,
    check,
    *args: Any,
) -> None:
    # Run a capability check and record refusals before propagating them.
    try:
        check(principal, *args)
    except ForbiddenError as exc:
        await security_log.log(
            "permission_denied",
            request=request,
            user_id=principal.id,
            user_type=principal.kind,
            details={"site_id": site.id, "reason": exc.user_message},
        )
        raise


async def _require_capability(
    request: Request,
    principal: Principal,
    security_log: SecurityEventLog,
    site: Site,
    permissions: SitePermissions,
    flag: str,
) -> None:
    await _guard(request, principal, security_log, site, require_site_capability, permissions, flag)


async def _require_item_capability(
    request: Request,
    principal: Principal,
    security_log: SecurityEventLog,
    site: Site,
    permissions: SitePermissions,
    collection,
    operation: ItemOperation,
) -> None:
    await _guard(
        request, principal, security_log, site, require_item_capability, permissions, collection, operation
    )


async def _record(
    db: AsyncSession,
    request: Request,
    principal: Principal,
    site: Site,
    action: str,
    *,
    entity_type: str,
    entity_id: str | None,
    changes: dict[str, Any] | None = None,
) -> None:
    context = get_request_context(request)
    await activity_repo.record_activity(
        db,
        site_id=site.id,
        user_id=principal.id,
        user_type=principal.kind,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        changes=changes,
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
    )


def _require_editable(site: Site) -> None:
    if site.status == "archived":
        raise ValidationError("Archived sites cannot be modified")


@router.get("/me")
async def me(
    principal: ClientPrincipal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    client = await get_client(db, principal.id)
    if client is None:
        raise NotFoundError("User not found")
    return success_response(client_payload(client))


@router.get("/sites")
async def list_my_sites(
    principal: ClientPrincipal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await sites_repo.list_sites_for_client(db, principal.id)
    return success_response([site_payload(site) for site in rows])


@router.get("/sites/{slug}")
async def get_site_content(
    slug: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    permissions = await get_site_permissions(db, site.id)
    collections = []
    for collection in await content_repo.list_collections(db, site.id):
        entry = collection_payload(collection)
        entry["items"] = [item_payload(item) for item in await content_repo.list_items(db, collection.id)]
        collections.append(entry)
    data = site_payload(site)
    data["permissions"] = permissions.as_dict()
    data["business"] = serialize_business(await sites_repo.get_business_info(db, site.id))
    data["text"] = [text_payload(row) for row in await content_repo.list_text_content(db, site.id)]
    data["images"] = [image_payload(row) for row in await content_repo.list_images(db, site.id)]
    data["collections"] = collections
    return success_response(data)


@router.get("/sites/{slug}/business-info")
async def get_business_info(
    slug: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    return success_response(serialize_business(await sites_repo.get_business_info(db, site.id)))


@router.put("/sites/{slug}/business-info")
async def update_business_info(
    slug: str,
    payload: BusinessInfoUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    permissions = await get_site_permissions(db, site.id)
    await _require_capability(request, principal, security_log, site, permissions, "can_edit_business_info")
    _require_editable(site)

    raw = payload.model_dump(exclude_unset=True)
    fields: dict[str, Any] = {}
    for key in ("business_name", "phone", "email", "logo_url"):
        if key in raw:
            fields[key] = sanitize_text(raw[key]) if isinstance(raw[key], str) else raw[key]
    for key, value in (raw.get("address") or {}).items():
        fields[f"address_{key}"] = sanitize_text(value) if isinstance(value, str) else value
    if "hours" in raw:
        fields["hours"] = sanitize_payload(raw["hours"] or {})
    if "social" in raw:
        fields["social_links"] = sanitize_payload(raw["social"] or {})

    info = await sites_repo.update_business_info(db, site.id, fields)
    await _record(
        db, request, principal, site, "update_business_info",
        entity_type="business_info", entity_id=info.id, changes=fields,
    )
    await db.commit()
    return success_response(serialize_business(info))


@router.put("/sites/{slug}/text/{content_key}")
async def update_text(
    slug: str,
    content_key: str,
    payload: TextUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    permissions = await get_site_permissions(db, site.id)
    await _require_capability(request, principal, security_log, site, permissions, "can_edit_text")
    _require_editable(site)
    row = await content_repo.get_text_content(db, site.id, content_key)
    if row is None:
        raise NotFoundError("Text field not found")
    # Rich text keeps its markup; everything else is stored as plain text.
    value = payload.content.replace("\x00", "") if row.content_type == "richtext" else sanitize_text(payload.content)
    previous = row.content
    await content_repo.update_text_value(db, row, value)
    await _record(
        db, request, principal, site, "update_text",
        entity_type="text_content", entity_id=row.id,
        changes={"content_key": content_key, "previous_length": len(previous), "length": len(value)},
    )
    await db.commit()
    return success_response(text_payload(row))


@router.put("/sites/{slug}/images/{image_key}")
async def update_image(
    slug: str,
    image_key: str,
    payload: ImageUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    permissions = await get_site_permissions(db, site.id)
    await _require_capability(request, principal, security_log, site, permissions, "can_edit_images")
    _require_editable(site)
    row = await content_repo.get_image(db, site.id, image_key)
    if row is None:
        raise NotFoundError("Image slot not found")
    alt_text = sanitize_text(payload.alt_text) if payload.alt_text is not None else None
    await content_repo.update_image(db, row, url=payload.url, alt_text=alt_text)
    await _record(
        db, request, principal, site, "update_image",
        entity_type="image", entity_id=row.id, changes={"image_key": image_key, "url": payload.url},
    )
    await db.commit()
    return success_response(image_payload(row))


@router.get("/sites/{slug}/collections/{collection_key}/items")
async def list_items(
    slug: str,
    collection_key: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    collection = await content_repo.require_collection(db, site.id, collection_key)
    items = await content_repo.list_items(db, collection.id)
    return success_response([item_payload(item) for item in items])


@router.post("/sites/{slug}/collections/{collection_key}/items", status_code=201)
async def create_item(
    slug: str,
    collection_key: str,
    payload: ItemCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    collection = await content_repo.require_collection(db, site.id, collection_key)
    permissions = await get_site_permissions(db, site.id)
    await _require_item_capability(request, principal, security_log, site, permissions, collection, "create")
    _require_editable(site)
    item = await content_repo.create_item(
        db, collection, data=sanitize_payload(payload.data), is_visible=payload.is_visible
    )
    await _record(
        db, request, principal, site, "create_collection_item",
        entity_type="collection_item", entity_id=item.id, changes={"collection_id": collection.id},
    )
    await db.commit()
    return success_response(item_payload(item))


@router.get("/sites/{slug}/collections/{collection_key}/items/{item_id}")
async def get_item(
    slug: str,
    collection_key: str,
    item_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    collection = await content_repo.require_collection(db, site.id, collection_key)
    item = await content_repo.get_item(db, collection.id, item_id)
    if item is None:
        raise NotFoundError("Item not found")
    return success_response(item_payload(item))


@router.put("/sites/{slug}/collections/{collection_key}/items/{item_id}")
async def update_item(
    slug: str,
    collection_key: str,
    item_id: str,
    payload: ItemUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    collection = await content_repo.require_collection(db, site.id, collection_key)
    permissions = await get_site_permissions(db, site.id)
    await _require_item_capability(request, principal, security_log, site, permissions, collection, "update")
    _require_editable(site)
    item = await content_repo.get_item(db, collection.id, item_id)
    if item is None:
        raise NotFoundError("Item not found")
    data = sanitize_payload(payload.data) if payload.data is not None else None
    await content_repo.update_item(db, item, data=data, is_visible=payload.is_visible)
    await _record(
        db, request, principal, site, "update_collection_item",
        entity_type="collection_item", entity_id=item.id,
        changes=payload.model_dump(exclude_none=True, include={"is_visible"}) or None,
    )
    await db.commit()
    return success_response(item_payload(item))


@router.delete("/sites/{slug}/collections/{collection_key}/items/{item_id}")
async def delete_item(
    slug: str,
    collection_key: str,
    item_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    collection = await content_repo.require_collection(db, site.id, collection_key)
    permissions = await get_site_permissions(db, site.id)
    await _require_item_capability(request, principal, security_log, site, permissions, collection, "delete")
    _require_editable(site)
    item = await content_repo.get_item(db, collection.id, item_id)
    if item is None:
        raise NotFoundError("Item not found")
    await content_repo.delete_item(db, item)
    await _record(
        db, request, principal, site, "delete_collection_item",
        entity_type="collection_item", entity_id=item_id, changes={"collection_id": collection.id},
    )
    await db.commit()
    return message_response("Item deleted")


@router.put("/sites/{slug}/collections/{collection_key}/reorder")
async def reorder_items(
    slug: str,
    collection_key: str,
    payload: ReorderRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    collection = await content_repo.require_collection(db, site.id, collection_key)
    permissions = await get_site_permissions(db, site.id)
    await _require_item_capability(request, principal, security_log, site, permissions, collection, "reorder")
    _require_editable(site)
    items = await content_repo.reorder_items(db, collection.id, payload.item_ids)
    await _record(
        db, request, principal, site, "reorder_collection_items",
        entity_type="collection", entity_id=collection.id, changes={"item_ids": payload.item_ids},
    )
    await db.commit()
    return success_response([item_payload(item) for item in items])


@router.post("/sites/{slug}/publish")
async def publish_site(
    slug: str,
    payload: PublishRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    permissions = await get_site_permissions(db, site.id)
    await _require_capability(request, principal, security_log, site, permissions, "can_publish")
    if site.status == "archived":
        raise ValidationError("Archived sites cannot be published")

    snapshot = await build_site_content(site)
    entry = await activity_repo.record_publish(
        db,
        site_id=site.id,
        published_by=principal.id,
        publisher_type=principal.kind,
        content_snapshot=snapshot,
        notes=sanitize_text(payload.notes) if payload.notes else None,
    )
    await sites_repo.update_site(db, site, status="published")
    await _record(
        db, request, principal, site, "publish_site",
        entity_type="site", entity_id=site.id, changes={"version_number": entry.version_number},
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Another publish is in progress", internal_message=str(exc.orig)) from exc
    return success_response(
        {
            "version_number": entry.version_number,
            "published_at": site.published_at.isoformat() if site.published_at else None,
            "site": site_payload(site),
        }
    )


@router.get("/sites/{slug}/publish-history")
async def publish_history(
    slug: str,
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    rows = await activity_repo.list_publish_history(db, site.id, limit=limit)
    return success_response([publish_payload(row) for row in rows])


@router.get("/sites/{slug}/activity")
async def site_activity(
    slug: str,
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await _site_for(request, db, principal, slug, security_log)
    rows = await activity_repo.list_activity(db, site_id=site.id, limit=limit)
    return success_response([activity_payload(row) for row in rows])
