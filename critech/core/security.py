"""
Critech request authentication.

Bearer tokens are opaque to this service; they are resolved to a user id by
the external identity provider (Supabase Auth).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from critech.core.config import get_settings
from critech.core.errors import AuthenticationFailed, Forbidden

logger = logging.getLogger(__name__)
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


class SupabaseIdentityProvider:
    """Resolves access tokens through ``GET /auth/v1/user``."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def verify_token(self, token: str) -> AuthenticatedUser:
        url = f"{settings.supabase_url.rstrip('/')}/auth/v1/user"
        headers = {
            "apikey": settings.supabase_service_key,
            "Authorization": f"Bearer {token}",
        }
        timeout = httpx.Timeout(
            settings.provider_timeout_seconds,
            connect=settings.provider_connect_timeout_seconds,
        )
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider unreachable: {e}")
            raise AuthenticationFailed("Authentication failed")

        if response.status_code != 200:
            logger.info(f"Token rejected by identity provider (status={response.status_code})")
            raise AuthenticationFailed("Invalid token")

        data = response.json()
        user_id = data.get("id")
        if not user_id:
            raise AuthenticationFailed("Invalid token")
        return AuthenticatedUser(id=str(user_id), email=data.get("email"))


identity_provider = SupabaseIdentityProvider()


async def _resolve(credentials: Optional[HTTPAuthorizationCredentials]) -> AuthenticatedUser:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise AuthenticationFailed("No token provided")
    return await identity_provider.verify_token(credentials.credentials)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthenticatedUser:
    return await _resolve(credentials)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[AuthenticatedUser]:
    if credentials is None:
        return None
    return await _resolve(credentials)


def require_owner_scope(owner_id: Optional[str], user: Optional[AuthenticatedUser]):
    """Owner-scoped listings need the owner's own token."""
    if owner_id is None:
        return
    if user is None:
        raise AuthenticationFailed("No token provided")
    if user.id != owner_id:
        raise Forbidden("You can only list your own reviews")
