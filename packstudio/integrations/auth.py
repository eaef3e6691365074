"""Resolve bearer tokens against the hosted auth service."""

from typing import Optional

import httpx
from loguru import logger
from pydantic import BaseModel, Field


class AuthUser(BaseModel):
    """The signed-in user as reported by the auth service."""

    id: str
    email: Optional[str] = None
    role: str = "creator"
    metadata: dict = Field(default_factory=dict)


class AuthClient:
    """Looks up the user behind an access token via ``GET /auth/v1/user``."""

    def __init__(
        self,
        base_url: str,
        anon_key: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._client = client

    async def get_user(self, access_token: Optional[str]) -> Optional[AuthUser]:
        """Return the user for a token, or None if the token is missing or rejected."""
        if not access_token or not self.base_url:
            return None

        headers = {"Authorization": f"Bearer {access_token}"}
        if self.anon_key:
            headers["apikey"] = self.anon_key

        url = f"{self.base_url}/auth/v1/user"
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"Auth service request failed: {e}")
            return None

        if response.status_code in (401, 403):
            return None
        if response.status_code != 200:
            logger.warning(f"Auth service returned HTTP {response.status_code}")
            return None

        try:
            data = response.json()
            metadata = data.get("user_metadata") or {}
            return AuthUser(
                id=data["id"],
                email=data.get("email"),
                role=metadata.get("role", "creator"),
                metadata=metadata,
            )
        except (ValueError, KeyError, AttributeError) as e:
            logger.warning(f"Auth service returned an unreadable user: {e}")
            return None
