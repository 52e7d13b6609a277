import time
import logging
from typing import Tuple

import redis

from .cache import _client as _redis_client

logger = logging.getLogger(__name__)

_rl_cache: dict[str, int] = {}


def check_and_increment(scope: str, key: str, max_per_minute: int = 60, burst: int = 30) -> Tuple[bool, int]:
    """Fixed one-minute window with a small burst allowance.

    Returns (allowed, count). Redis-backed when REDIS_URL is set so the limit
    holds across processes; otherwise per process.
    """
    limit = max_per_minute + burst
    now = int(time.time() // 60)
    bucket = f"rl:{scope}:{key}:{now}"
    client = _redis_client()
    if client is not None:
        try:
            val = int(client.incr(bucket))
            if val == 1:
                client.expire(bucket, 65)
            return val <= limit, val
        except redis.RedisError:
            logger.warning("rate_limit_redis_failed", extra={"bucket": bucket})
    count = _rl_cache.get(bucket, 0)
    if count >= limit:
        return False, count
    _rl_cache[bucket] = count + 1
    return True, count + 1
