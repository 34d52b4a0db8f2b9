"""
Async Redis client for generator quota usage counters.
Provides incr/get operations with graceful fallback on Redis failure.
"""

import os
import asyncio
import logging
from datetime import datetime
from typing import Optional

from utils.quota import quota_day

logger = logging.getLogger(__name__)

_redis_client = None
_redis_available = None
_redis_lock = asyncio.Lock()

USAGE_KEY_PREFIX = "quota"
USAGE_TTL_SECONDS = 2 * 86400  # keep yesterday's counter around for reporting


async def _get_redis():
    """Lazy-init async Redis connection singleton with lock to prevent race conditions."""
    global _redis_client, _redis_available
    if _redis_available is False:
        return None
    if _redis_client is not None:
        return _redis_client
    async with _redis_lock:
        # Double-check after acquiring lock
        if _redis_client is not None:
            return _redis_client
        if _redis_available is False:
            return None
        try:
            import redis.asyncio as aioredis
            url = os.getenv("REDIS_URL", "redis://localhost:6379")
            _redis_client = aioredis.from_url(url, decode_responses=True)
            await _redis_client.ping()
            _redis_available = True
            logger.info(f"Redis connected: {url}")
            return _redis_client
        except Exception as e:
            logger.warning(f"Redis unavailable, quota usage will not be tracked: {e}")
            _redis_available = False
            _redis_client = None
            return None


def _usage_key(provider: str, kind: str = "requests", now: Optional[datetime] = None) -> str:
    # Counters roll over with the provider quota window, midnight Pacific
    day = quota_day(now)
    return f"{USAGE_KEY_PREFIX}:{kind}:{provider}:{day}"


async def incr_daily_usage(provider: str, kind: str = "requests") -> Optional[int]:
    """Increment today's request counter. Returns the new count or None on Redis failure."""
    try:
        r = await _get_redis()
        if r is None:
            return None
        key = _usage_key(provider, kind)
        pipe = r.pipeline()
        pipe.incr(key)
        pipe.expire(key, USAGE_TTL_SECONDS)
        count, _ = await pipe.execute()
        return int(count)
    except Exception as e:
        logger.warning(f"Redis incr_daily_usage failed: {e}")
        return None


async def get_daily_usage(provider: str, kind: str = "requests") -> Optional[int]:
    """Today's request count. Returns None on Redis failure."""
    try:
        r = await _get_redis()
        if r is None:
            return None
        value = await r.get(_usage_key(provider, kind))
        return int(value) if value else 0
    except Exception as e:
        logger.warning(f"Redis get_daily_usage failed: {e}")
        return None
