from __future__ import annotations

from datetime import datetime
from typing import Any

from siteportal.domain.models import (
    ActivityLog,
    AdminUser,
    Client,
    Collection,
    CollectionItem,
    ImageSlot,
    PublishHistory,
    SecurityLog,
    Site,
    TextContent,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def site_payload(site: Site, *, include_api_key: bool = False) -> dict[str, Any]:
    payload = {
        "id": site.id,
        "name": site.name,
        "slug": site.slug,
        "preview_url": site.preview_url,
        "custom_domain": site.custom_domain,
        "client_id": site.client_id,
        "created_by": site.created_by,
        "status": site.status,
        "published_at": _iso(site.published_at),
        "created_at": _iso(site.created_at),
        "updated_at": _iso(site.updated_at),
    }
    # The public read key is shown to admins only.
    if include_api_key:
        payload["api_key"] = site.api_key
        payload["api_key_created_at"] = _iso(site.api_key_created_at)
    return payload


def client_payload(client: Client) -> dict[str, Any]:
    return {
        "id": client.id,
        "email": client.email,
        "name": client.name,
        "company": client.company,
        "phone": client.phone,
        "is_active": client.is_active,
        "mfa_enabled": client.mfa_enabled,
        "failed_login_attempts": client.failed_login_attempts,
        "locked_until": _iso(client.locked_until),
        "last_login_at": _iso(client.last_login_at),
        "password_changed_at": _iso(client.password_changed_at),
        "created_at": _iso(client.created_at),
    }


def admin_payload(admin: AdminUser) -> dict[str, Any]:
    return {
        "id": admin.id,
        "email": admin.email,
        "name": admin.name,
        "role": admin.role,
        "is_active": admin.is_active,
        "last_login_at": _iso(admin.last_login_at),
    }


def text_payload(row: TextContent) -> dict[str, Any]:
    return {
        "id": row.id,
        "content_key": row.content_key,
        "label": row.label,
        "content": row.content,
        "content_type": row.content_type,
        "max_length": row.max_length,
        "placeholder": row.placeholder,
        "sort_order": row.sort_order,
    }


def image_payload(row: ImageSlot) -> dict[str, Any]:
    return {
        "id": row.id,
        "image_key": row.image_key,
        "label": row.label,
        "description": row.description,
        "url": row.url,
        "alt_text": row.alt_text,
        "recommended_width": row.recommended_width,
        "recommended_height": row.recommended_height,
        "max_file_size_kb": row.max_file_size_kb,
        "sort_order": row.sort_order,
    }


def collection_payload(row: Collection) -> dict[str, Any]:
    return {
        "id": row.id,
        "collection_key": row.collection_key,
        "label": row.label,
        "description": row.description,
        "item_schema": row.item_schema or {},
        "can_add": row.can_add,
        "can_delete": row.can_delete,
        "can_reorder": row.can_reorder,
        "max_items": row.max_items,
        "sort_order": row.sort_order,
    }


def item_payload(row: CollectionItem) -> dict[str, Any]:
    return {
        "id": row.id,
        "collection_id": row.collection_id,
        "data": row.data or {},
        "sort_order": row.sort_order,
        "is_visible": row.is_visible,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def activity_payload(row: ActivityLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "site_id": row.site_id,
        "user_id": row.user_id,
        "user_type": row.user_type,
        "action": row.action,
        "entity_type": row.entity_type,
        "entity_id": row.entity_id,
        "changes": row.changes,
        "created_at": _iso(row.created_at),
    }


def publish_payload(row: PublishHistory) -> dict[str, Any]:
    return {
        "id": row.id,
        "site_id": row.site_id,
        "version_number": row.version_number,
        "published_by": row.published_by,
        "publisher_type": row.publisher_type,
        "notes": row.notes,
        "created_at": _iso(row.created_at),
    }


def security_log_payload(row: SecurityLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "event_type": row.event_type,
        "user_id": row.user_id,
        "user_type": row.user_type,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "endpoint": row.endpoint,
        "details": row.details,
        "severity": row.severity,
        "created_at": _iso(row.created_at),
    }
