"""Redis copy of confirmed DNA cache entries, so the cache survives restarts.

Only confirmed entries are written. Redis failures are logged and swallowed:
the mirror is a convenience and must never fail a read.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from pokerdna.dna.schemas import CachedDNA

logger = structlog.get_logger()

DNA_CACHE_KEY = "{prefix}{user_id}"


class RedisCacheMirror:
    def __init__(self, redis: aioredis.Redis, ttl_seconds: int, prefix: str = "pokerdna:dna:") -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def key(self, user_id: str) -> str:
        return DNA_CACHE_KEY.format(prefix=self.prefix, user_id=user_id)

    async def save(self, dna: CachedDNA) -> bool:
        if dna.pending_sync or dna.is_default:
            return False
        try:
            await self.redis.setex(self.key(dna.user_id), self.ttl_seconds, dna.model_dump_json())
        except (RedisError, OSError):
            logger.warning("dna_mirror_save_failed", user_id=dna.user_id, exc_info=True)
            return False
        return True

    async def load(self, user_id: str) -> CachedDNA | None:
        try:
            raw = await self.redis.get(self.key(user_id))
        except (RedisError, OSError):
            logger.warning("dna_mirror_load_failed", user_id=user_id, exc_info=True)
            return None
        if not raw:
            return None
        try:
            return CachedDNA.model_validate_json(raw)
        except ValidationError:
            logger.warning("dna_mirror_corrupt_entry", user_id=user_id)
            return None

    async def delete(self, user_id: str) -> None:
        try:
            await self.redis.delete(self.key(user_id))
        except (RedisError, OSError):
            logger.warning("dna_mirror_delete_failed", user_id=user_id, exc_info=True)
