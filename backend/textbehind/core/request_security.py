"""Boundary checks run before the usage gate.

Rejects automated clients by user agent and, in production, requests
that do not originate from the web app. These run as a dependency on the
usage endpoints so a rejected request never reaches the gate.
"""

import logging
from urllib.parse import urlsplit

from fastapi import Request

from textbehind.core.config import Settings, settings
from textbehind.core.errors import RequestRejectedError

logger = logging.getLogger(__name__)


def _request_origin(request: Request) -> str | None:
    return request.headers.get("origin") or request.headers.get("referer")


def _same_origin(url: str, expected: str) -> bool:
    actual, wanted = urlsplit(url), urlsplit(expected)
    return (actual.scheme, actual.netloc) == (wanted.scheme, wanted.netloc)


def validate_request_security(request: Request, config: Settings = settings) -> None:
    """Reject requests from blocked user agents or foreign origins.

    Raises:
        RequestRejectedError: If a check fails.
    """
    user_agent = request.headers.get("user-agent", "").lower()
    if not user_agent:
        logger.warning("Rejected usage request without user agent")
        raise RequestRejectedError("Missing user agent")

    for fragment in config.usage_blocked_user_agents:
        if fragment.lower() in user_agent:
            logger.warning("Rejected usage request from user agent %r", user_agent)
            raise RequestRejectedError("Automated requests are not allowed")

    if config.environment == "production":
        origin = _request_origin(request)
        if not origin or not _same_origin(origin, config.app_base_url):
            logger.warning("Rejected usage request from origin %r", origin)
            raise RequestRejectedError("Invalid request origin")
