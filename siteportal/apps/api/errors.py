from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from siteportal.apps.api.response import error_response
from siteportal.core.config import get_settings
from siteportal.core.errors import InternalError, PortalError


logger = logging.getLogger(__name__)


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    # Only the user-facing message crosses the boundary; internal detail stays in server logs.
    if isinstance(exc, InternalError):
        if get_settings().is_production:
            logger.error("request_failed path=%s status=%s", request.url.path, exc.status_code)
        else:
            logger.error(
                "request_failed path=%s status=%s detail=%s",
                request.url.path,
                exc.status_code,
                exc.internal_message or exc.user_message,
            )
    elif exc.internal_message:
        logger.info(
            "request_rejected path=%s status=%s detail=%s",
            request.url.path,
            exc.status_code,
            exc.internal_message,
        )
    return JSONResponse(
        content=error_response(exc.user_message),
        status_code=exc.status_code,
        headers=exc.headers or None,
    )


def _format_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid input"
    first = errors[0]
    # Drop the "body"/"query" prefix so the message names the field itself.
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    message = str(first.get("msg", "Invalid value"))
    if location:
        return f"{'.'.join(location)}: {message}"
    return message


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(content=error_response(_format_validation_error(exc)), status_code=400)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Routing errors such as 404/405 use the same error shape as application errors.
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(content=error_response(detail), status_code=exc.status_code, headers=exc.headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; log them server-side and return a stable message.
    logger.exception("unhandled_error path=%s", request.url.path)
    return JSONResponse(content=error_response(InternalError.default_message), status_code=500)
