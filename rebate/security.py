"""Security dependencies for the admin bearer key."""
from __future__ import annotations

import hmac

from fastapi import Header

from rebate.config import get_settings
from rebate.core.logging import get_logger
from rebate.utils.errors import DomainError

logger = get_logger(__name__)


class AdminAuthRequired(DomainError):
    status_code_default = 401
    code_default = "ADMIN_AUTH_REQUIRED"


def _extract_bearer(authorization: str | None) -> str | None:
    """Read the token from ``Authorization: Bearer ...``."""

    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def require_admin(authorization: str | None = Header(default=None)) -> str:
    """Accept the request only when it carries the configured admin key."""

    expected = get_settings().ADMIN_API_KEY
    token = _extract_bearer(authorization)
    if not expected:
        logger.error("Admin route called but ADMIN_API_KEY is not configured")
        raise AdminAuthRequired("Admin access is not configured.", headers={"WWW-Authenticate": "Bearer"})
    if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Admin authentication failed")
        raise AdminAuthRequired("Admin API key required.", headers={"WWW-Authenticate": "Bearer"})
    return "admin"


__all__ = ["AdminAuthRequired", "require_admin"]
