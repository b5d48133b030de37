from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from siteportal.apps.api.errors import (
    portal_error_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from siteportal.apps.api.rate_limit import RateLimiter, RedisCounterBackend
from siteportal.apps.api.routes.admin_clients import router as admin_clients_router
from siteportal.apps.api.routes.admin_logs import router as admin_logs_router
from siteportal.apps.api.routes.admin_sites import router as admin_sites_router
from siteportal.apps.api.routes.auth import router as auth_router
from siteportal.apps.api.routes.client import router as client_router
from siteportal.apps.api.routes.health import router as health_router
from siteportal.apps.api.routes.public import router as public_router
from siteportal.core.config import get_settings
from siteportal.core.errors import PortalError
from siteportal.core.logging import configure_logging
from siteportal.services.auth.identity import LocalIdentityProvider
from siteportal.services.security_log import SecurityEventLog


logger = logging.getLogger(__name__)

API_TITLE = "Site Portal API"
API_VERSION = "1.0.0"
REQUEST_ID_HEADER = "X-Request-Id"

# Routes that take no bearer credential.
_UNAUTHENTICATED_PREFIXES = ("/health", "/api/auth/")


def _default_rate_limiter() -> RateLimiter:
    settings = get_settings()
    if not settings.rate_limit_redis_url:
        # No counter service configured: every check fails open and says so in the logs.
        logger.warning("rate_limit_backend_missing rate limiting will fail open")
        return RateLimiter()
    return RateLimiter(RedisCounterBackend.from_settings(settings))


def _security_requirement(path: str) -> dict[str, list[str]] | None:
    if path.startswith(_UNAUTHENTICATED_PREFIXES):
        return None
    if path.startswith("/api/public/"):
        return {"SiteApiKey": []}
    return {"BearerAuth": []}


def _build_openapi(app: FastAPI) -> dict[str, Any]:
    # Bearer sessions for admin/client routes, the per-site key for the public API.
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(title=API_TITLE, version=API_VERSION, routes=app.routes)
    schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {"type": "http", "scheme": "bearer"},
        "SiteApiKey": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
    }
    for path, operations in schema.get("paths", {}).items():
        requirement = _security_requirement(path)
        if requirement is None:
            continue
        for operation in operations.values():
            operation.setdefault("security", [requirement])
    app.openapi_schema = schema
    return schema


def _register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


def create_app(
    *,
    identity: LocalIdentityProvider | None = None,
    security_log: SecurityEventLog | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    configure_logging()
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.rate_limiter.close()

    app = FastAPI(title=API_TITLE, version=API_VERSION, lifespan=lifespan)
    # Process-owned handles; dependencies read them from the request's app.
    app.state.identity = identity or LocalIdentityProvider(settings=settings)
    app.state.security_log = security_log or SecurityEventLog()
    app.state.rate_limiter = rate_limiter or _default_rate_limiter()

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):  # type: ignore[override]
        # Echo the caller's request id, or mint one, so logs and responses correlate.
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        response = await call_next(request)
        response.headers.setdefault(REQUEST_ID_HEADER, request.state.request_id)
        return response

    _register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)
    # Public content API consumed by client websites with a per-site key.
    app.include_router(public_router)
    app.include_router(admin_sites_router)
    app.include_router(admin_clients_router)
    app.include_router(admin_logs_router)
    app.include_router(client_router)

    app.openapi = lambda: _build_openapi(app)  # type: ignore[method-assign]
    return app


app = create_app()
