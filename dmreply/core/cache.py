import logging
from contextlib import contextmanager
from typing import Optional

from dmreply.core.errors import SubscriptionBusy
from dmreply.core.redis_cache import LockTimeout, RedisCache

logger = logging.getLogger(__name__)


# Global cache instance
_cache_instance: Optional[RedisCache] = None


def get_cache() -> RedisCache:
    """Get global Redis cache instance"""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache()
    return _cache_instance


def _subscription_lock_key(stripe_subscription_id: str) -> str:
    return f"lock:subscription:{stripe_subscription_id}"


@contextmanager
def subscription_lock(stripe_subscription_id: str, timeout_seconds: int = 30, block_seconds: float = 10):
    """
    Serialize mutations of one Stripe subscription across workers.

    Without Redis the body still runs, unlocked; callers keep their own
    status guards for that case. When another worker holds the lock past
    ``block_seconds`` the body does not run and SubscriptionBusy is raised.
    """
    cache = get_cache()
    key = _subscription_lock_key(stripe_subscription_id)
    try:
        token = cache.acquire_lock(key, timeout_seconds=timeout_seconds, block_seconds=block_seconds)
    except LockTimeout:
        logger.warning(f"subscription_lock: Lock busy - {stripe_subscription_id}")
        raise SubscriptionBusy()
    if token is None:
        logger.warning(f"subscription_lock: Proceeding without lock - {stripe_subscription_id}")
    try:
        yield token is not None
    finally:
        if token is not None:
            cache.release_lock(key, token)
