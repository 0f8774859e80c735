from __future__ import annotations

"""API key authentication for the admin endpoints."""

import hmac
from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from src.app.settings import settings


@dataclass(frozen=True)
class AuthContext:
    """Resolved authentication context for the current request."""
    api_key: str | None
    anonymous: bool = False


async def require_api_key(request: Request) -> AuthContext:
    """Validate the admin API key or allow anonymous access if configured."""
    allowed = settings.api_keys
    if not allowed:
        if settings.allow_anonymous:
            return AuthContext(api_key=None, anonymous=True)
        raise _unauthorized("API key required")
    api_key = _extract_api_key(request)
    if api_key is None or not any(hmac.compare_digest(api_key, key) for key in allowed):
        raise _unauthorized("Invalid or missing API key")
    return AuthContext(api_key=api_key)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_api_key(request: Request) -> str | None:
    """Extract API key from headers."""
    header_key = request.headers.get("x-api-key")
    if header_key:
        return header_key.strip()
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None
