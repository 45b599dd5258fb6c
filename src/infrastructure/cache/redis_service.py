import redis
import json
import logging
from typing import Optional, Any
import os

logger = logging.getLogger(__name__)

# Delete the lease only if we still own it
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

# Push the expiry out only while we still own the lease
_EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('expire', KEYS[1], ARGV[2])
end
return 0
"""


class RedisService:
    """
    Leaderboard response cache and cross-process refresh lease.

    Everything degrades to a no-op when Redis is not configured or unreachable;
    the in-process single-flight guard still applies in that case.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[Any] = None):
        self.redis_url = redis_url if redis_url is not None else os.getenv("REDIS_URL")
        self.client = client
        if self.client is not None:
            return
        if self.redis_url:
            try:
                self.client = redis.from_url(self.redis_url, decode_responses=True)
                # Test connection
                self.client.ping()
                logger.info("Connected to Redis for caching.")
            except Exception as e:
                logger.warning(f"Failed to connect to Redis: {e}. Caching disabled.")
                self.client = None
        else:
            logger.info("REDIS_URL not set. Caching disabled.")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[Any]:
        if not self.client:
            return None
        try:
            data = self.client.get(key)
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            logger.warning(f"Redis get error: {e}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: int = 60):
        if not self.client:
            return
        try:
            if hasattr(value, "model_dump_json"):
                serialized = value.model_dump_json()
            else:
                serialized = json.dumps(
                    value,
                    default=lambda o: o.model_dump(mode="json") if hasattr(o, "model_dump") else str(o),
                )
            self.client.setex(key, ttl_seconds, serialized)
        except Exception as e:
            logger.warning(f"Redis set error: {e}")

    def delete(self, *keys: str):
        if not self.client or not keys:
            return
        try:
            self.client.delete(*keys)
        except Exception as e:
            logger.warning(f"Redis delete error: {e}")

    def acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """
        Atomically take a lease (SET NX EX). Returns True when acquired, or when
        Redis is unavailable and no cross-process guard can be applied.
        """
        if not self.client:
            return True
        try:
            return bool(self.client.set(key, owner, nx=True, ex=ttl_seconds))
        except Exception as e:
            logger.warning(f"Redis lease error: {e}. Falling back to in-process guard.")
            return True

    def extend_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """Renew a held lease. Returns False only when Redis reports the lease is no longer ours."""
        if not self.client:
            return True
        try:
            return bool(self.client.eval(_EXTEND_SCRIPT, 1, key, owner, ttl_seconds))
        except Exception as e:
            logger.warning(f"Redis lease renewal error: {e}")
            return True

    def release_lease(self, key: str, owner: str):
        if not self.client:
            return
        try:
            self.client.eval(_RELEASE_SCRIPT, 1, key, owner)
        except Exception as e:
            logger.warning(f"Redis lease release error: {e}")

    def close(self):
        if self.client is not None:
            try:
                self.client.close()
            except Exception as e:
                logger.warning(f"Redis close error: {e}")
            self.client = None
