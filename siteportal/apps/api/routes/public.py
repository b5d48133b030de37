from __future__ import annotations

import time

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from siteportal.apps.api.deps import get_db, get_rate_limiter, get_security_log
from siteportal.apps.api.openapi import PUBLIC_ERROR_RESPONSES
from siteportal.apps.api.rate_limit import BUCKET_PUBLIC, RateLimiter, enforce_rate_limit
from siteportal.core.config import get_settings
from siteportal.core.errors import NotFoundError, UnauthorizedError, ValidationError
from siteportal.persistence.repos.sites import get_site_by_slug_and_api_key
from siteportal.services.public_content import build_site_content
from siteportal.services.security.sanitize import is_valid_slug
from siteportal.services.security_log import SecurityEventLog


router = APIRouter(prefix="/api/public", tags=["public"], responses=PUBLIC_ERROR_RESPONSES)

API_KEY_HEADER = "x-api-key"
# One message for every lookup failure so callers cannot tell which part was wrong.
SITE_NOT_FOUND = "Site not found or invalid API key"


def _cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, OPTIONS",
        "Access-Control-Allow-Headers": f"Content-Type, {API_KEY_HEADER}",
        "Access-Control-Max-Age": str(get_settings().public_cors_max_age_s),
    }


@router.options("/sites/{slug}/content")
async def public_content_preflight(slug: str) -> Response:
    return Response(status_code=204, headers=_cors_headers())


@router.get("/sites/{slug}/content")
async def get_public_content(
    slug: str,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
    security_log: SecurityEventLog = Depends(get_security_log),
) -> JSONResponse:
    started = time.perf_counter()
    decision = await enforce_rate_limit(
        request=request,
        limiter=limiter,
        security_log=security_log,
        bucket=BUCKET_PUBLIC,
        response=response,
        severity="warning",
    )

    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise UnauthorizedError("API key required")
    # Reject malformed slugs before touching storage.
    if not is_valid_slug(slug):
        raise ValidationError("Invalid site identifier")

    site = await get_site_by_slug_and_api_key(db, slug, api_key)
    if site is None:
        await security_log.log(
            "invalid_api_key",
            request=request,
            details={"slug": slug, "key_prefix": api_key[:8]},
        )
        raise NotFoundError(SITE_NOT_FOUND)
    if site.status != "published":
        raise NotFoundError(SITE_NOT_FOUND)

    content = await build_site_content(site)
    settings = get_settings()
    result = JSONResponse(content=content)
    for name, value in response.headers.items():
        if name != "content-length":
            result.headers[name] = value
    result.headers.update(_cors_headers())
    result.headers["Cache-Control"] = (
        f"public, s-maxage={settings.public_cache_s_maxage}, "
        f"stale-while-revalidate={settings.public_cache_stale_while_revalidate}"
    )
    result.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    result.headers["X-Response-Time"] = f"{(time.perf_counter() - started) * 1000.0:.1f}ms"
    return result
