from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.deps import get_db, get_security_log, rate_limited, require_admin
from siteportal.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from siteportal.apps.api.rate_limit import BUCKET_ADMIN
from siteportal.apps.api.response import success_response
from siteportal.apps.api.serializers import (
    activity_payload,
    collection_payload,
    image_payload,
    site_payload,
    text_payload,
)
from siteportal.core.errors import ConflictError, NotFoundError, ValidationError
from siteportal.domain.models import Site
from siteportal.persistence.repos import activity as activity_repo
from siteportal.persistence.repos import content as content_repo
from siteportal.persistence.repos import sites as sites_repo
from siteportal.persistence.repos.principals import get_client
from siteportal.services.auth.principals import AdminPrincipal
from siteportal.services.authz.permissions import get_site_permissions
from siteportal.services.authz.site_access import require_admin_site
from siteportal.services.public_content import serialize_business
from siteportal.services.security.sanitize import is_valid_content_key, is_valid_slug, sanitize_text
from siteportal.services.security_log import SecurityEventLog, get_request_context


router = APIRouter(
    prefix="/api/admin/sites",
    tags=["admin"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(rate_limited(BUCKET_ADMIN))],
)


class SiteCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=2, max_length=100)
    client_id: str | None = None
    preview_url: str | None = Field(default=None, max_length=500)
    custom_domain: str | None = Field(default=None, max_length=255)


class SiteUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    slug: str | None = Field(default=None, min_length=2, max_length=100)
    client_id: str | None = None
    preview_url: str | None = Field(default=None, max_length=500)
    custom_domain: str | None = Field(default=None, max_length=255)
    status: Literal["draft", "published", "archived"] | None = None


class PermissionsUpdateRequest(BaseModel):
    can_edit_business_info: bool | None = None
    can_edit_text: bool | None = None
    can_edit_images: bool | None = None
    can_edit_collections: bool | None = None
    can_add_collection_items: bool | None = None
    can_delete_collection_items: bool | None = None
    can_reorder_collection_items: bool | None = None
    can_publish: bool | None = None


class TextFieldCreateRequest(BaseModel):
    content_key: str = Field(min_length=1, max_length=100)
    label: str = Field(min_length=1, max_length=255)
    content: str = ""
    content_type: Literal["text", "textarea", "richtext"] = "text"
    max_length: int | None = Field(default=None, ge=1)
    placeholder: str | None = Field(default=None, max_length=500)
    sort_order: int = 0


class ImageSlotCreateRequest(BaseModel):
    image_key: str = Field(min_length=1, max_length=100)
    label: str = Field(min_length=1, max_length=255)
    description: str | None = None
    recommended_width: int | None = Field(default=None, ge=1)
    recommended_height: int | None = Field(default=None, ge=1)
    max_file_size_kb: int = Field(default=2048, ge=1)
    sort_order: int = 0


class CollectionCreateRequest(BaseModel):
    collection_key: str = Field(min_length=1, max_length=100)
    label: str = Field(min_length=1, max_length=255)
    description: str | None = None
    item_schema: dict[str, Any] = Field(default_factory=dict)
    can_add: bool = True
    can_delete: bool = True
    can_reorder: bool = True
    max_items: int | None = Field(default=None, ge=1)
    sort_order: int = 0


async def _admin_action(
    security_log: SecurityEventLog,
    request: Request,
    principal: AdminPrincipal,
    action: str,
    **details: Any,
) -> None:
    await security_log.log(
        "admin_action",
        request=request,
        user_id=principal.id,
        user_type="admin",
        details={"action": action, **details},
    )


async def _record_site_activity(
    db: AsyncSession,
    request: Request,
    principal: AdminPrincipal,
    site: Site,
    action: str,
    changes: dict[str, Any] | None = None,
    *,
    entity_type: str = "site",
    entity_id: str | None = None,
) -> None:
    context = get_request_context(request)
    await activity_repo.record_activity(
        db,
        site_id=site.id,
        user_id=principal.id,
        user_type="admin",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id or site.id,
        changes=changes,
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
    )


def _require_slug(slug: str) -> None:
    if not is_valid_slug(slug):
        raise ValidationError(
            "Slug must be 2-100 characters of lowercase letters, numbers and hyphens, "
            "and must start and end with a letter or number"
        )


def _require_content_key(key: str) -> None:
    if not is_valid_content_key(key):
        raise ValidationError(
            "Key must start with a lowercase letter and contain only lowercase letters, numbers and underscores"
        )


async def _ensure_slug_available(db: AsyncSession, slug: str, *, exclude_site_id: str | None = None) -> None:
    existing = await sites_repo.get_site_by_slug(db, slug)
    if existing is not None and existing.id != exclude_site_id:
        raise ConflictError("A site with this slug already exists")


async def _ensure_client_exists(db: AsyncSession, client_id: str | None) -> None:
    if client_id is not None and await get_client(db, client_id) is None:
        raise ValidationError("Client not found")


async def _commit_or_conflict(db: AsyncSession, message: str) -> None:
    # Uniqueness races surface from the database as integrity errors.
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(message, internal_message=str(exc.orig)) from exc


@router.get("")
async def list_sites(
    status: Literal["draft", "published", "archived"] | None = Query(default=None),
    client_id: str | None = Query(default=None),
    include_archived: bool = Query(default=False),
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await sites_repo.list_sites(
        db, status=status, client_id=client_id, include_archived=include_archived
    )
    return success_response([site_payload(site, include_api_key=True) for site in rows])


@router.post("", status_code=201)
async def create_site(
    payload: SiteCreateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    _require_slug(payload.slug)
    await _ensure_slug_available(db, payload.slug)
    await _ensure_client_exists(db, payload.client_id)
    site = await sites_repo.create_site(
        db,
        name=sanitize_text(payload.name),
        slug=payload.slug,
        created_by=principal.id,
        client_id=payload.client_id,
        preview_url=payload.preview_url,
        custom_domain=payload.custom_domain,
    )
    await _record_site_activity(db, request, principal, site, "create_site", {"slug": site.slug})
    await _commit_or_conflict(db, "A site with this slug already exists")
    await _admin_action(security_log, request, principal, "create_site", site_id=site.id, slug=site.slug)
    return success_response(site_payload(site, include_api_key=True))


@router.get("/{site_id}")
async def get_site(
    site_id: str,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    permissions = await get_site_permissions(db, site.id)
    data = site_payload(site, include_api_key=True)
    data["permissions"] = permissions.as_dict()
    data["business"] = serialize_business(await sites_repo.get_business_info(db, site.id))
    data["text"] = [text_payload(row) for row in await content_repo.list_text_content(db, site.id)]
    data["images"] = [image_payload(row) for row in await content_repo.list_images(db, site.id)]
    data["collections"] = [
        collection_payload(row) for row in await content_repo.list_collections(db, site.id)
    ]
    return success_response(data)


@router.patch("/{site_id}")
async def update_site(
    site_id: str,
    payload: SiteUpdateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    # Nullable links may be cleared explicitly; required columns ignore nulls.
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in ("client_id", "preview_url", "custom_domain")
    }
    if "slug" in changes:
        _require_slug(changes["slug"])
        await _ensure_slug_available(db, changes["slug"], exclude_site_id=site.id)
    if "client_id" in changes:
        await _ensure_client_exists(db, changes["client_id"])
    if "name" in changes:
        changes["name"] = sanitize_text(changes["name"])
    new_status = changes.get("status")
    # Archived is terminal.
    if site.status == "archived" and new_status is not None and new_status != "archived":
        raise ValidationError("Archived sites cannot be restored")
    await sites_repo.update_site(db, site, **changes)
    await _record_site_activity(db, request, principal, site, "update_site", changes)
    await _commit_or_conflict(db, "A site with this slug already exists")
    await _admin_action(security_log, request, principal, "update_site", site_id=site.id, fields=sorted(changes))
    return success_response(site_payload(site, include_api_key=True))


@router.delete("/{site_id}")
async def archive_site(
    site_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    # Sites are soft-deleted by archiving; rows and content stay in place.
    site = await require_admin_site(db, principal, site_id)
    await sites_repo.archive_site(db, site)
    await _record_site_activity(db, request, principal, site, "archive_site")
    await db.commit()
    await _admin_action(security_log, request, principal, "archive_site", site_id=site.id)
    return success_response(site_payload(site, include_api_key=True))


@router.post("/{site_id}/api-key")
async def regenerate_api_key(
    site_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    await sites_repo.regenerate_api_key(db, site)
    await _record_site_activity(db, request, principal, site, "regenerate_api_key")
    await db.commit()
    await _admin_action(security_log, request, principal, "regenerate_api_key", site_id=site.id)
    return success_response(
        {"api_key": site.api_key, "api_key_created_at": site.api_key_created_at.isoformat()}
    )


@router.get("/{site_id}/permissions")
async def get_permissions(
    site_id: str,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    permissions = await get_site_permissions(db, site.id)
    return success_response(permissions.as_dict())


@router.put("/{site_id}/permissions")
async def update_permissions(
    site_id: str,
    payload: PermissionsUpdateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    flags = payload.model_dump(exclude_none=True)
    await sites_repo.upsert_permissions(db, site.id, flags)
    await _record_site_activity(
        db, request, principal, site, "update_permissions", flags, entity_type="site_permissions"
    )
    await db.commit()
    await _admin_action(security_log, request, principal, "update_permissions", site_id=site.id, flags=flags)
    permissions = await get_site_permissions(db, site.id)
    return success_response(permissions.as_dict())


@router.post("/{site_id}/text-fields", status_code=201)
async def create_text_field(
    site_id: str,
    payload: TextFieldCreateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    _require_content_key(payload.content_key)
    if await content_repo.get_text_content(db, site.id, payload.content_key) is not None:
        raise ConflictError("A text field with this key already exists")
    fields = payload.model_dump()
    fields["content"] = sanitize_text(fields["content"])
    row = await content_repo.create_text_content(db, site.id, **fields)
    await _record_site_activity(
        db, request, principal, site, "create_text_field", {"content_key": row.content_key},
        entity_type="text_content", entity_id=row.id,
    )
    await _commit_or_conflict(db, "A text field with this key already exists")
    await _admin_action(security_log, request, principal, "create_text_field", site_id=site.id, key=row.content_key)
    return success_response(text_payload(row))


@router.delete("/{site_id}/text-fields/{field_id}")
async def delete_text_field(
    site_id: str,
    field_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    row = await content_repo.get_text_field(db, site.id, field_id)
    if row is None:
        raise NotFoundError("Text field not found")
    content_key = row.content_key
    await content_repo.delete_text_content(db, row)
    await _record_site_activity(
        db, request, principal, site, "delete_text_field", {"content_key": content_key},
        entity_type="text_content", entity_id=field_id,
    )
    await db.commit()
    await _admin_action(
        security_log, request, principal, "delete_text_field",
        site_id=site.id, field_id=field_id, key=content_key,
    )
    return success_response({"message": "Text field deleted"})


@router.post("/{site_id}/images", status_code=201)
async def create_image_slot(
    site_id: str,
    payload: ImageSlotCreateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    _require_content_key(payload.image_key)
    if await content_repo.get_image(db, site.id, payload.image_key) is not None:
        raise ConflictError("An image slot with this key already exists")
    row = await content_repo.create_image(db, site.id, **payload.model_dump())
    await _record_site_activity(
        db, request, principal, site, "create_image_slot", {"image_key": row.image_key},
        entity_type="image", entity_id=row.id,
    )
    await _commit_or_conflict(db, "An image slot with this key already exists")
    await _admin_action(security_log, request, principal, "create_image_slot", site_id=site.id, key=row.image_key)
    return success_response(image_payload(row))


@router.post("/{site_id}/collections", status_code=201)
async def create_collection(
    site_id: str,
    payload: CollectionCreateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    _require_content_key(payload.collection_key)
    existing = [row.collection_key for row in await content_repo.list_collections(db, site.id)]
    if payload.collection_key in existing:
        raise ConflictError("A collection with this key already exists")
    row = await content_repo.create_collection(db, site.id, **payload.model_dump())
    await _record_site_activity(
        db, request, principal, site, "create_collection", {"collection_key": row.collection_key},
        entity_type="collection", entity_id=row.id,
    )
    await _commit_or_conflict(db, "A collection with this key already exists")
    await _admin_action(
        security_log, request, principal, "create_collection", site_id=site.id, key=row.collection_key
    )
    return success_response(collection_payload(row))


@router.get("/{site_id}/activity")
async def list_site_activity(
    site_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    principal: AdminPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    site = await require_admin_site(db, principal, site_id)
    rows = await activity_repo.list_activity(db, site_id=site.id, limit=limit)
    return success_response([activity_payload(row) for row in rows])


