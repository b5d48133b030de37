from __future__ import annotations


class PortalError(Exception):
    """Base error carrying a client-safe message and an internal-only detail."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(
        self,
        user_message: str | None = None,
        *,
        internal_message: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.user_message = user_message or self.default_message
        self.internal_message = internal_message
        self.headers = headers or {}
        super().__init__(internal_message or self.user_message)


class UnauthorizedError(PortalError):
    """No credential or an invalid one."""

    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(PortalError):
    """Known identity lacking rights."""

    status_code = 403
    default_message = "Access denied"


class NotFoundError(PortalError):
    """Resource absent or deliberately disguised as absent."""

    status_code = 404
    default_message = "Resource not found"


class ValidationError(PortalError):
    status_code = 400
    default_message = "Invalid input"


class ConflictError(PortalError):
    status_code = 409
    default_message = "Resource already exists"


class RateLimitError(PortalError):
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, *, retry_after_s: int = 60, headers: dict[str, str] | None = None) -> None:
        merged = {"Retry-After": str(max(1, int(retry_after_s)))}
        merged.update(headers or {})
        super().__init__(headers=merged)
        self.retry_after_s = retry_after_s


class InternalError(PortalError):
    status_code = 500


class ConfigurationError(InternalError):
    """Missing or invalid deployment configuration."""


class IntegrityViolationError(InternalError):
    """Persisted data breaks an invariant the core relies on."""
