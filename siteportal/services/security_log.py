from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from siteportal.core.logging import CRITICAL_SECURITY_LOGGER
from siteportal.domain.models import SecurityLog
from siteportal.persistence.db import SessionLocal


logger = logging.getLogger(__name__)
critical_logger = logging.getLogger(CRITICAL_SECURITY_LOGGER)

EVENT_TYPES = (
    "login_success",
    "login_failure",
    "logout",
    "password_change",
    "password_reset_request",
    "password_reset_complete",
    "token_refresh",
    "token_revoked",
    "permission_denied",
    "rate_limit_exceeded",
    "invalid_token",
    "invalid_api_key",
    "suspicious_activity",
    "admin_action",
    "account_locked",
    "account_unlocked",
)

SEVERITIES = ("info", "warning", "critical")

_WARNING_EVENTS = frozenset({"login_failure", "invalid_token", "invalid_api_key", "permission_denied"})
_CRITICAL_EVENTS = frozenset({"rate_limit_exceeded", "suspicious_activity", "account_locked"})

MAX_USER_AGENT_LENGTH = 500

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "api_key"]
_REDACTED_VALUE = "[REDACTED]"


def default_severity(event_type: str) -> str:
    if event_type in _CRITICAL_EVENTS:
        return "critical"
    if event_type in _WARNING_EVENTS:
        return "warning"
    return "info"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_details(value: Any) -> Any:
    # Recursively scrub credential-looking fields while preserving safe structure.
    if isinstance(value, dict):
        return {
            str(key): _REDACTED_VALUE if _is_sensitive_key(str(key)) else sanitize_details(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [sanitize_details(item) for item in value]
    return value


def get_client_ip(request: Request | None) -> str:
    # Proxies put the client address first in X-Forwarded-For.
    if request is None:
        return "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract client hints without persisting credentials.
    if request is None:
        return {"ip_address": None, "user_agent": None, "endpoint": None}
    return {
        "ip_address": get_client_ip(request),
        "user_agent": request.headers.get("user-agent"),
        "endpoint": request.url.path,
    }


@dataclass
class SecurityEvent:
    event_type: str
    user_id: str | None = None
    user_type: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    endpoint: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    severity: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown security event type: {self.event_type}")
        if self.severity is None:
            self.severity = default_severity(self.event_type)
        elif self.severity not in SEVERITIES:
            raise ValueError(f"Unknown security event severity: {self.severity}")
        if self.user_agent is not None:
            self.user_agent = self.user_agent[:MAX_USER_AGENT_LENGTH]
        self.details = sanitize_details(self.details or {})


SecurityEventSink = Callable[[SecurityEvent], Awaitable[None]]


async def database_sink(event: SecurityEvent) -> None:
    # Use a dedicated session so a rolled back request still keeps its audit trail.
    async with SessionLocal() as session:
        session.add(
            SecurityLog(
                id=uuid4().hex,
                event_type=event.event_type,
                user_id=event.user_id,
                user_type=event.user_type,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                endpoint=event.endpoint,
                details=event.details,
                severity=event.severity,
                created_at=event.occurred_at,
            )
        )
        await session.commit()


class SecurityEventLog:
    """Append-only security audit trail.

    ``log`` never raises: persistence failures are written to the module
    logger and reported through the boolean result, which callers may ignore.
    """

    def __init__(self, *, sink: SecurityEventSink | None = None) -> None:
        self._sink = sink or database_sink

    async def log(
        self,
        event_type: str,
        *,
        request: Request | None = None,
        user_id: str | None = None,
        user_type: str | None = None,
        details: dict[str, Any] | None = None,
        severity: str | None = None,
    ) -> bool:
        context = get_request_context(request)
        try:
            event = SecurityEvent(
                event_type=event_type,
                user_id=user_id,
                user_type=user_type,
                ip_address=context["ip_address"],
                user_agent=context["user_agent"],
                endpoint=context["endpoint"],
                details=details or {},
                severity=severity,
            )
        except ValueError as exc:
            logger.error("security_event_rejected event_type=%s error=%s", event_type, exc)
            return False

        if event.severity == "critical":
            critical_logger.critical(
                "CRITICAL SECURITY EVENT event_type=%s user_id=%s ip=%s details=%s",
                event.event_type,
                event.user_id,
                event.ip_address,
                event.details,
            )

        try:
            await self._sink(event)
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "security_event_persist_failed event_type=%s user_id=%s error=%s",
                event.event_type,
                event.user_id,
                exc,
            )
            return False
        except Exception:  # noqa: BLE001 - audit logging must never abort the caller
            logger.exception("security_event_persist_failed event_type=%s", event.event_type)
            return False
        return True
