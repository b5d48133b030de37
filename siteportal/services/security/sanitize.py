from __future__ import annotations

import re
from typing import Any


SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$")
SLUG_MIN_LENGTH = 2
SLUG_MAX_LENGTH = 100

CONTENT_KEY_RE = re.compile(r"^[a-z][a-z0-9_]*$")
CONTENT_KEY_MAX_LENGTH = 100

_TAG_RE = re.compile(r"<[^>]*>")


def is_valid_slug(value: str | None) -> bool:
    if not value or not (SLUG_MIN_LENGTH <= len(value) <= SLUG_MAX_LENGTH):
        return False
    return bool(SLUG_RE.match(value))


def is_valid_content_key(value: str | None) -> bool:
    if not value or len(value) > CONTENT_KEY_MAX_LENGTH:
        return False
    return bool(CONTENT_KEY_RE.match(value))


def sanitize_text(value: str) -> str:
    # Strip markup and NUL bytes; content is rendered by consumer sites we do not control.
    return _TAG_RE.sub("", value.replace("\x00", "")).strip()


def sanitize_payload(value: Any) -> Any:
    # Recurse through item payloads, cleaning strings only.
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {str(key): sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_payload(item) for item in value]
    return value
