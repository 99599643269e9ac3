"""Redis-based per-scope lock preventing overlapping run cycles."""

import json
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

from primepulse.config import settings
from primepulse.utils.clock import utcnow

logger = logging.getLogger(__name__)

LOCK_KEY_TEMPLATE = "primepulse:cycle:{scope_id}"

# 0 = not found/already released, 1 = deleted, 2 = token mismatch
RELEASE_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.token == ARGV[1] then
    redis.call('DEL', KEYS[1])
    return 1
else
    return 2
end
"""


def lock_key(scope_id: int) -> str:
    return LOCK_KEY_TEMPLATE.format(scope_id=scope_id)


class CycleLock:
    """
    Per-scope cycle lock.

    Acquired with SET NX EX so a crashed worker's lock expires on its own;
    released only by the holder of the matching token.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds or settings.cycle_lock_ttl_seconds
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def acquire(self, scope_id: int) -> Optional[str]:
        """
        Try to take the lock for a scope.

        Returns:
            Token string if acquired, None if another cycle holds it
        """
        redis_client = await self._get_redis()

        token = uuid4().hex
        value = json.dumps({
            "scope_id": scope_id,
            "token": token,
            "started_at": utcnow().isoformat(),
        })
        acquired = await redis_client.set(lock_key(scope_id), value, nx=True, ex=self.ttl_seconds)
        if acquired:
            logger.info(f"Acquired cycle lock for scope {scope_id}")
            return token

        logger.debug(f"Cycle lock for scope {scope_id} already held")
        return None

    async def release(self, scope_id: int, token: str) -> bool:
        """Release the lock if ``token`` still owns it."""
        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(RELEASE_SCRIPT, 1, lock_key(scope_id), token)
        except RedisError as e:
            logger.error(f"Error releasing cycle lock for scope {scope_id}: {e}")
            return False

        if result == 0:
            logger.debug(f"Cycle lock for scope {scope_id} already released")
            return True
        if result == 1:
            logger.info(f"Released cycle lock for scope {scope_id}")
            return True

        logger.warning(f"Refused to release cycle lock for scope {scope_id}: token mismatch")
        return False

    async def get_lock_info(self, scope_id: int) -> Optional[Dict[str, Any]]:
        """Current holder of a scope's lock with its remaining TTL, or None."""
        redis_client = await self._get_redis()
        value = await redis_client.get(lock_key(scope_id))
        if not value:
            return None

        ttl = await redis_client.ttl(lock_key(scope_id))
        try:
            data = json.loads(value)
        except json.JSONDecodeError:
            return {"raw_value": value, "ttl_seconds": ttl if ttl > 0 else None}
        data["ttl_seconds"] = ttl if ttl > 0 else None
        return data
