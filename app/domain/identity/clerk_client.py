"""Clerk Backend API client - user lookups and public metadata mirroring"""

import logging
from typing import Optional

import httpx

from ...config import CLERK_API_URL, CLERK_SECRET_KEY

logger = logging.getLogger(__name__)

USER_CACHE_TTL = 60


class ClerkAPIError(Exception):
    """Raised when the Clerk Backend API is unavailable or rejects a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ClerkClient:
    """Thin async client for the Clerk Backend API"""

    def __init__(
        self,
        cache=None,
        secret_key: Optional[str] = CLERK_SECRET_KEY,
        api_url: str = CLERK_API_URL,
        timeout: float = 10.0,
    ):
        self.cache = cache
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.secret_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        if not self.is_available():
            raise ClerkAPIError("CLERK_SECRET_KEY not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, f"{self.api_url}{path}", headers=self._headers(), json=json
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Clerk API {method} {path} failed: {e}")
            raise ClerkAPIError(f"Clerk API request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"❌ Clerk API {method} {path} returned HTTP {response.status_code}")
            raise ClerkAPIError(
                f"Clerk API returned HTTP {response.status_code}", status_code=response.status_code
            )
        return response.json()

    async def get_user(self, user_id: str) -> dict:
        """Fetch a user object (same shape as webhook `data`), cached briefly"""
        cache_key = f"clerk:user:{user_id}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        user = await self._request("GET", f"/users/{user_id}")
        if self.cache is not None:
            self.cache.set(cache_key, user, USER_CACHE_TTL)
        return user

    async def update_public_metadata(self, user_id: str, metadata: dict) -> dict:
        """Merge keys into the user's public metadata"""
        user = await self._request(
            "PATCH", f"/users/{user_id}/metadata", json={"public_metadata": metadata}
        )
        if self.cache is not None:
            self.cache.invalidate(f"clerk:user:{user_id}")
        logger.info(f"✅ Clerk metadata updated for {user_id}: {list(metadata.keys())}")
        return user
