"""Bearer credentials for outgoing backup, restore and webhook requests."""

import logging
import time
from typing import Any

import jwt

from src.document import AuthConfig

logger = logging.getLogger(__name__)


def create_jwt(payload: dict[str, Any], secret: str, expiry_seconds: int, now: float | None = None) -> str:
    """Sign ``payload`` as an HS256 JWT. ``iat`` and ``exp`` are always added."""
    issued_at = int(now if now is not None else time.time())
    claims = dict(payload)
    claims["iat"] = issued_at
    claims["exp"] = issued_at + expiry_seconds
    return jwt.encode(claims, secret, algorithm="HS256")


def bearer_token(auth: AuthConfig | None) -> str:
    """Resolve the bearer credential for one request.

    A configured secret mints a fresh JWT; otherwise the plain token is used
    verbatim. Returns an empty string when neither is configured or signing fails.
    """
    if auth is None:
        return ""
    if auth.secret:
        try:
            return create_jwt(auth.payload, auth.secret, auth.jwt_expiry)
        except Exception:
            logger.exception("Failed to create JWT")
            return auth.token
    return auth.token


def auth_headers(auth: AuthConfig | None) -> dict[str, str]:
    """Build the Authorization header for ``auth`` (empty dict when there is none)."""
    token = bearer_token(auth)
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}
