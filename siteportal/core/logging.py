from __future__ import annotations

import logging

from siteportal.core.config import get_settings


CRITICAL_SECURITY_LOGGER = "siteportal.security.critical"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure root logging once; repeated app factories must not stack handlers.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # Critical security events must stay visible even when the app runs at WARNING or above.
    logging.getLogger(CRITICAL_SECURITY_LOGGER).setLevel(logging.WARNING)
