import logging
import time
import uuid
from typing import Optional, Dict, Any
import redis
from redis.exceptions import RedisError
from dmreply.core.config import settings

logger = logging.getLogger(__name__)

# Delete the lock only if we still own it
_RELEASE_LOCK_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LockTimeout(Exception):
    """Raised when a held lock is not released within the wait window"""

    def __init__(self, lock_key: str):
        self.lock_key = lock_key
        super().__init__(f"Timed out waiting for lock {lock_key}")


class RedisCache:
    """Redis-backed store for rate-limit counters and per-key locks"""

    def __init__(self):
        """Initialize Redis cache (lazy connection)"""
        self._client: Optional[redis.Redis] = None
        self._connected = False

    def _connect(self):
        """Connect to Redis server; leaves the cache disabled on failure"""
        client_kwargs: Dict[str, Any] = {
            'decode_responses': False,
            'socket_connect_timeout': 2,
            'socket_timeout': 2,
            'retry_on_timeout': False,
            'health_check_interval': 0,
        }
        if settings.redis_password:
            client_kwargs['password'] = settings.redis_password

        try:
            self._client = redis.from_url(settings.redis_url, **client_kwargs)
            self._client.ping()
            self._connected = True
            logger.info("RedisCache: Connected to Redis")
        except (RedisError, ValueError) as e:
            logger.warning(f"RedisCache: Connection failed - {e}")
            self._client = None
            self._connected = False

    def _ensure_connected(self) -> Optional[redis.Redis]:
        """Return a live client, connecting lazily; None when Redis is unavailable"""
        if not self._connected or self._client is None:
            self._connect()
        return self._client

    def _reset(self):
        self._connected = False

    def incr_with_ttl(self, key: str, ttl_seconds: int) -> Optional[int]:
        """
        Atomically increment a counter, setting its TTL on first use.

        Returns:
            The new value, or None if Redis is unavailable
        """
        client = self._ensure_connected()
        if client is None:
            return None

        try:
            new_value = int(client.incr(key))
            if new_value == 1:
                client.expire(key, ttl_seconds)
            return new_value
        except RedisError as e:
            logger.error(f"RedisCache: Error incrementing key {key}: {e}")
            self._reset()
            return None

    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        client = self._ensure_connected()
        if client is None:
            return False
        try:
            client.ping()
            return True
        except RedisError:
            self._reset()
            return False

    def acquire_lock(self, lock_key: str, timeout_seconds: int = 10, block_seconds: float = 5) -> Optional[str]:
        """
        Acquire a distributed lock using Redis.

        Args:
            lock_key: Unique key for the lock
            timeout_seconds: How long the lock will be held (auto-release)
            block_seconds: How long to wait trying to acquire the lock

        Returns:
            The owner token if the lock was acquired, None if Redis is unavailable

        Raises:
            LockTimeout: another holder kept the lock for the whole wait
        """
        client = self._ensure_connected()
        if client is None:
            logger.warning(f"RedisCache: Cannot acquire lock {lock_key} - Redis not available")
            return None

        token = str(uuid.uuid4())
        deadline = time.monotonic() + block_seconds
        try:
            while True:
                if client.set(lock_key, token, nx=True, ex=timeout_seconds):
                    logger.debug(f"RedisCache: Lock acquired - {lock_key}")
                    return token
                if time.monotonic() >= deadline:
                    logger.warning(f"RedisCache: Timed out waiting for lock - {lock_key}")
                    raise LockTimeout(lock_key)
                time.sleep(0.05)
        except RedisError as e:
            logger.error(f"RedisCache: Error acquiring lock {lock_key}: {e}")
            self._reset()
            return None

    def release_lock(self, lock_key: str, token: str):
        """Release a lock previously acquired with ``acquire_lock``"""
        client = self._ensure_connected()
        if client is None:
            return

        try:
            client.eval(_RELEASE_LOCK_SCRIPT, 1, lock_key, token)
            logger.debug(f"RedisCache: Lock released - {lock_key}")
        except RedisError as e:
            logger.error(f"RedisCache: Error releasing lock {lock_key}: {e}")
            self._reset()
