from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.core.errors import ForbiddenError
from siteportal.domain.models import Collection, SitePermissionsRow
from siteportal.persistence.repos.sites import get_permissions_row
from siteportal.services.auth.principals import AdminPrincipal, Principal


ItemOperation = Literal["create", "update", "delete", "reorder"]


@dataclass(frozen=True)
class SitePermissions:
    can_edit_business_info: bool = False
    can_edit_text: bool = False
    can_edit_images: bool = False
    can_edit_collections: bool = False
    can_add_collection_items: bool = False
    can_delete_collection_items: bool = False
    can_reorder_collection_items: bool = False
    can_publish: bool = False

    @classmethod
    def from_row(cls, row: SitePermissionsRow | None) -> "SitePermissions":
        # A missing row denies everything.
        if row is None:
            return DENY_ALL
        return cls(**{f.name: bool(getattr(row, f.name)) for f in fields(cls)})

    def as_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


DENY_ALL = SitePermissions()


async def get_site_permissions(session: AsyncSession, site_id: str) -> SitePermissions:
    return SitePermissions.from_row(await get_permissions_row(session, site_id))


_SITE_FLAG_MESSAGES: dict[str, str] = {
    "can_edit_business_info": "You do not have permission to edit business information",
    "can_edit_text": "You do not have permission to edit text content",
    "can_edit_images": "You do not have permission to edit images",
    "can_edit_collections": "You do not have permission to edit collections",
    "can_add_collection_items": "You do not have permission to add collection items",
    "can_delete_collection_items": "You do not have permission to delete collection items",
    "can_reorder_collection_items": "You do not have permission to reorder collection items",
    "can_publish": "You do not have permission to publish changes",
}

# operation -> (site-level flag, collection-level flag, collection refusal message)
ITEM_RULES: dict[str, tuple[str, str | None, str | None]] = {
    "create": ("can_add_collection_items", "can_add", "Adding items to this collection is not allowed"),
    "update": ("can_edit_collections", None, None),
    "delete": ("can_delete_collection_items", "can_delete", "Deleting items from this collection is not allowed"),
    "reorder": ("can_reorder_collection_items", "can_reorder", "Reordering items in this collection is not allowed"),
}


def require_site_capability(principal: Principal, permissions: SitePermissions, flag: str) -> None:
    # Admins are not bound by per-site capability flags.
    if isinstance(principal, AdminPrincipal):
        return
    if not getattr(permissions, flag):
        raise ForbiddenError(_SITE_FLAG_MESSAGES[flag])


def require_item_capability(
    principal: Principal,
    permissions: SitePermissions,
    collection: Collection,
    operation: ItemOperation,
) -> None:
    """Check both layers for a collection item mutation.

    The site flag and the collection flag are ANDed; neither one alone grants
    the operation.
    """
    if isinstance(principal, AdminPrincipal):
        return
    site_flag, collection_flag, collection_message = ITEM_RULES[operation]
    require_site_capability(principal, permissions, site_flag)
    if collection_flag is not None and not getattr(collection, collection_flag):
        raise ForbiddenError(collection_message)
