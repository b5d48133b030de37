from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.core.errors import ForbiddenError, NotFoundError
from siteportal.domain.models import Site
from siteportal.persistence.repos.sites import get_site, get_site_by_slug
from siteportal.services.auth.principals import AdminPrincipal, ClientPrincipal, Principal


async def require_site_access_by_slug(session: AsyncSession, principal: Principal, slug: str) -> Site:
    # An unknown slug is Forbidden, not NotFound, so callers cannot discover which slugs exist.
    site = await get_site_by_slug(session, slug)
    if site is None:
        raise ForbiddenError("Site not found")
    if isinstance(principal, AdminPrincipal):
        return site
    if isinstance(principal, ClientPrincipal) and site.client_id == principal.id:
        return site
    raise ForbiddenError("Access denied to this site")


async def require_admin_site(session: AsyncSession, principal: AdminPrincipal, site_id: str) -> Site:
    # Admins may act on any site, but it still has to exist.
    site = await get_site(session, site_id)
    if site is None:
        raise NotFoundError("Site not found")
    return site
