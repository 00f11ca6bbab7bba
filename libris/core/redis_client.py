"""Async Redis client shared across the application.

Used for:
- the revocation list of signed-out access tokens
- realtime message fan-out (see ``libris.infrastructure.realtime``)
"""

import time
from typing import Any, AsyncGenerator, Optional

import redis.asyncio as aioredis

from libris.core.config import settings


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    """FastAPI dependency: yield a connected Redis client, close on teardown."""
    client: aioredis.Redis = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    try:
        yield client
    finally:
        await client.aclose()


class RevocationList:
    """Token IDs of signed-out sessions.

    Entries expire together with the token they block, so the list never
    outgrows the set of still-valid tokens.
    """

    prefix = "revoked:"

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def revoke(self, claims: dict[str, Any]) -> Optional[int]:
        """Block the token described by *claims*; return the TTL used."""
        jti: Optional[str] = claims.get("jti")
        exp: Optional[int] = claims.get("exp")
        if not jti or not exp:
            return None
        ttl = max(int(exp - time.time()), 1)
        await self.client.setex(f"{self.prefix}{jti}", ttl, "1")
        return ttl

    async def is_revoked(self, claims: dict[str, Any]) -> bool:
        jti: Optional[str] = claims.get("jti")
        if not jti:
            return False
        return await self.client.exists(f"{self.prefix}{jti}") == 1
