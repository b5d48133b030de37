from __future__ import annotations

from typing import Any

from siteportal.apps.api.response import ErrorEnvelope


def _error_entry(description: str, message: str) -> dict[str, Any]:
    # Build a consistent error example for OpenAPI docs.
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": {"error": message}}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _error_entry("Bad request", "email: value is not a valid email address"),
    401: _error_entry("Unauthorized", "Invalid or expired session"),
    403: _error_entry("Forbidden", "Access denied to this site"),
    404: _error_entry("Not found", "Resource not found"),
    409: _error_entry("Conflict", "Resource already exists"),
    429: _error_entry("Rate limited", "Too many requests. Please try again later."),
    500: _error_entry("Internal error", "An unexpected error occurred"),
}

PUBLIC_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _error_entry("Malformed slug", "Invalid site identifier"),
    401: _error_entry("Missing API key", "API key required"),
    404: _error_entry("Unknown, unpublished or mismatched site", "Site not found or invalid API key"),
    429: DEFAULT_ERROR_RESPONSES[429],
}
