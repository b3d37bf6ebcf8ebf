"""Redis-backed town/session registry.

Keys:
- ``{prefix}:towns`` set of registered town ids
- ``{prefix}:session:{town_id}:{token}`` identity owning the token,
  optionally with a TTL
"""

from typing import TYPE_CHECKING

import structlog

from posttown.posts.errors import NotFoundError, StoreFailureError

from .resolver import generate_session_token


if TYPE_CHECKING:
    from redis.asyncio import Redis


logger = structlog.get_logger(__name__)


class RedisSessionResolver:
    """Resolves session tokens of a single town."""

    def __init__(self, redis: "Redis", key_prefix: str, town_id: str) -> None:
        self.redis = redis
        self.key_prefix = key_prefix
        self.town_id = town_id

    async def resolve(self, token: str) -> str | None:
        if not token:
            return None
        try:
            return await self.redis.get(
                f"{self.key_prefix}:session:{self.town_id}:{token}"
            )
        except Exception as e:
            logger.exception(
                "session_resolve_failed", town_id=self.town_id, error=str(e)
            )
            raise StoreFailureError("Session lookup failed", cause=e) from e


class RedisSessionRegistry:
    """Town/session registry shared by every API worker."""

    def __init__(
        self,
        redis: "Redis",
        key_prefix: str = "posttown",
        session_ttl: int | None = None,
    ) -> None:
        self.redis = redis
        self.key_prefix = key_prefix
        self.session_ttl = session_ttl

    @property
    def towns_key(self) -> str:
        return f"{self.key_prefix}:towns"

    def _session_key(self, town_id: str, token: str) -> str:
        return f"{self.key_prefix}:session:{town_id}:{token}"

    async def _require_town(self, town_id: str) -> None:
        if not await self.redis.sismember(self.towns_key, town_id):
            raise NotFoundError(f"Town {town_id} not found")

    async def resolver_for(self, town_id: str) -> RedisSessionResolver:
        await self._require_town(town_id)
        return RedisSessionResolver(self.redis, self.key_prefix, town_id)

    async def register_town(self, town_id: str) -> None:
        await self.redis.sadd(self.towns_key, town_id)
        logger.info("town_registered", town_id=town_id)

    async def remove_town(self, town_id: str) -> bool:
        removed = await self.redis.srem(self.towns_key, town_id)
        pattern = f"{self.key_prefix}:session:{town_id}:*"
        keys = [key async for key in self.redis.scan_iter(pattern)]
        if keys:
            await self.redis.delete(*keys)
        if removed:
            logger.info("town_removed", town_id=town_id, sessions=len(keys))
        return bool(removed)

    async def open_session(
        self, town_id: str, identity: str, token: str | None = None
    ) -> str:
        await self._require_town(town_id)
        token = token or generate_session_token()
        await self.redis.set(
            self._session_key(town_id, token), identity, ex=self.session_ttl
        )
        logger.debug("session_opened", town_id=town_id, identity=identity)
        return token

    async def close_session(self, town_id: str, token: str) -> bool:
        return bool(await self.redis.delete(self._session_key(town_id, token)))
