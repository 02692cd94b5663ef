"""
API key authentication for the tool endpoints.

The key may be sent as ``X-API-Key: <key>`` or ``Authorization: Bearer <key>``.
When ``FETCHBOX_API_KEY`` is unset every request is let through.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, Request

from fetchbox.config import get_settings
from fetchbox.server.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "bearer "


def key_matches(candidate: str, expected: str) -> bool:
    """Constant-time comparison of two keys."""
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def _presented_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key
    if authorization and authorization.lower().startswith(_BEARER_PREFIX):
        return authorization[len(_BEARER_PREFIX):].strip() or None
    return None


def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    authorization: Optional[str] = Header(None),
) -> Optional[str]:
    """
    FastAPI dependency guarding the tool routes.

    Raises:
        AuthenticationError: If a key is configured and the request carries
            none, or a different one.

    Returns:
        The accepted key, or None when authentication is disabled.
    """
    expected = get_settings().api_key
    if not expected:
        return None

    presented = _presented_key(x_api_key, authorization)
    client = request.client.host if request.client else "unknown"
    if presented is None:
        logger.warning("Rejected %s %s from %s: no API key", request.method, request.url.path, client)
        raise AuthenticationError("Missing API key (X-API-Key or Authorization: Bearer)")
    if not key_matches(presented, expected):
        logger.warning("Rejected %s %s from %s: wrong API key", request.method, request.url.path, client)
        raise AuthenticationError("Invalid API key")
    return presented
