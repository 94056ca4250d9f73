"""
Request dependencies shared by API routes.

Authentication happens upstream (gateway or auth service). Requests
reach this API with the verified actor in `X-Actor-Id` and its granted
capabilities, comma separated, in `X-Actor-Capabilities`. When an API key
is configured, `X-API-Key` must match it.
"""

import secrets
from typing import Optional

from fastapi import Header

from config.settings import get_settings
from exceptions import AppError
from models.actor import Actor


class AuthenticationError(AppError):
    """Missing actor identity or wrong API key (401)."""

    def __init__(self, message: str):
        super().__init__(
            code="UNAUTHENTICATED",
            message=message,
            status_code=401
        )


def parse_capabilities(raw: Optional[str]) -> frozenset[str]:
    """'import:write, import:admin' -> {'import:write', 'import:admin'}"""
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


async def get_current_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_capabilities: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
) -> Actor:
    """Resolve the acting user from request headers."""
    expected_key = get_settings().api_key
    if expected_key and not secrets.compare_digest(x_api_key or "", expected_key):
        raise AuthenticationError("Invalid or missing API key")

    if not x_actor_id or not x_actor_id.strip():
        raise AuthenticationError("Missing X-Actor-Id header")

    return Actor(
        id=x_actor_id.strip(),
        capabilities=parse_capabilities(x_actor_capabilities),
    )
