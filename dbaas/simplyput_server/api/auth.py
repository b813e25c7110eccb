"""
Caller identity resolution.

Requests carry an OAuth2 access token, either as the ``access_token``
query parameter or as ``Authorization: Bearer <token>``. The token is
exchanged for a stable user id at the provider's userinfo endpoint; that id
is the tenant identity used to namespace storage kinds.

In dev mode the ``user_id`` query parameter is taken as the identity
directly and no token is needed. Never enable it in production.

Invariants:
    - Tokens are never logged
    - An empty identity is never returned
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import aiohttp
from aiohttp import web

from ..errors import AuthError, BackendError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class IdentityProvider(Protocol):
    """Resolves a bearer token to a stable identity string."""

    async def resolve(self, token: str) -> str:
        """Resolve a token.

        Raises:
            AuthError: If the token is invalid or expired
            BackendError: If the provider cannot be reached
        """
        ...


class UserInfoIdentityProvider:
    """Identity provider backed by an OAuth2 userinfo endpoint.

    The endpoint is called as ``GET {userinfo_url}?access_token=...`` and
    must answer with a JSON object carrying the user's ``id``.

    Example:
        >>> provider = UserInfoIdentityProvider("https://www.googleapis.com/oauth2/v1/userinfo")
        >>> await provider.start()
        >>> identity = await provider.resolve(token)
        >>> await provider.close()
    """

    def __init__(
        self,
        userinfo_url: str,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize the provider.

        Args:
            userinfo_url: Userinfo endpoint URL
            timeout_seconds: Total timeout per resolve call
            session: Optional shared client session (not closed by close())
        """
        self.userinfo_url = userinfo_url
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        """Open the HTTP client session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP client session if this provider opened it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def resolve(self, token: str) -> str:
        """Exchange an access token for the provider's user id."""
        if self._session is None:
            await self.start()

        try:
            async with self._session.get(
                self.userinfo_url, params={"access_token": token}
            ) as resp:
                if resp.status >= 500:
                    raise BackendError(
                        f"Identity provider returned {resp.status}",
                        details={"status": resp.status},
                    )
                if resp.status >= 400:
                    raise AuthError("invalid auth", details={"status": resp.status})
                info = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Identity provider request failed: {e}")
            raise BackendError(f"Identity provider unavailable: {e}") from e
        except ValueError as e:
            raise BackendError(f"Identity provider sent invalid JSON: {e}") from e

        identity = info.get("id") if isinstance(info, dict) else None
        if not identity:
            raise AuthError("invalid auth")
        return str(identity)


def extract_access_token(request: web.Request) -> Optional[str]:
    """Get the access token from the query string or Authorization header."""
    token = request.query.get("access_token", "")
    if not token:
        header = request.headers.get("Authorization", "")
        if header.startswith(BEARER_PREFIX):
            token = header[len(BEARER_PREFIX) :]
    return token or None


async def resolve_identity(
    request: web.Request,
    provider: Optional[IdentityProvider],
    dev_mode: bool = False,
) -> str:
    """Determine the caller identity for a request.

    Args:
        request: HTTP request
        provider: Identity provider (unused in dev mode)
        dev_mode: Take user_id from the query string instead

    Returns:
        Non-empty identity string

    Raises:
        AuthError: If no identity can be established
    """
    if dev_mode:
        # For local development, don't require an access token.
        user_id = request.query.get("user_id", "")
        if not user_id:
            raise AuthError("user_id is required in dev mode")
        return user_id

    token = extract_access_token(request)
    if not token:
        raise AuthError("Unauthorized")
    if provider is None:
        raise AuthError("No identity provider configured")
    return await provider.resolve(token)
