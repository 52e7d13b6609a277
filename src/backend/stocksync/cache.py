import os, json, time
import logging
from typing import Optional, Any
import redis

logger = logging.getLogger(__name__)

_mem: dict[str, dict[str, Any]] = {}
_client_singleton = None


def _client():
    """Shared Redis client, or None when REDIS_URL is not configured."""
    global _client_singleton
    if _client_singleton is not None:
        return _client_singleton
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    _client_singleton = redis.Redis.from_url(url, decode_responses=True)
    return _client_singleton


def cache_get(key: str) -> Optional[Any]:
    c = _client()
    if c:
        try:
            v = c.get(key)
            return json.loads(v) if v else None
        except redis.RedisError:
            logger.warning("cache_get_failed", extra={"key": key})
    v = _mem.get(key)
    if v and v.get("exp", 0) > time.time():
        return v.get("val")
    return None


def cache_set(key: str, val: Any, ttl: int = 60) -> None:
    c = _client()
    s = json.dumps(val)
    if c:
        try:
            c.setex(key, ttl, s)
            return
        except redis.RedisError:
            logger.warning("cache_set_failed", extra={"key": key})
    _mem[key] = {"val": val, "exp": time.time() + ttl}


def cache_del(key: str) -> None:
    c = _client()
    if c:
        try:
            c.delete(key)
        except redis.RedisError:
            logger.warning("cache_del_failed", extra={"key": key})
    _mem.pop(key, None)


def cache_incr(key: str, by: int = 1, expire_seconds: int = 86400) -> int:
    """Increment an integer counter with TTL. Returns the new value."""
    c = _client()
    if c:
        try:
            v = c.incrby(key, by)
            if c.ttl(key) < 0:
                c.expire(key, expire_seconds)
            return int(v)
        except redis.RedisError:
            logger.warning("cache_incr_failed", extra={"key": key})
    cur = 0
    now = time.time()
    entry = _mem.get(key)
    if entry and entry.get("exp", 0) > now:
        cur = int(entry.get("val") or 0)
    cur += by
    _mem[key] = {"val": cur, "exp": now + expire_seconds}
    return cur


# Simple circuit breaker helpers ------------------------------------------------
def breaker_allow(name: str) -> bool:
    """Return True if the circuit is closed (allowed), False if open."""
    return not bool(cache_get(f"cb_open:{name}"))


def breaker_on_result(name: str, ok: bool, fail_threshold: int = 3, cool_seconds: int = 60) -> None:
    """Track success/failure and open the circuit if failures exceed threshold within window."""
    if ok:
        cache_del(f"cb_fail:{name}")
        return
    fails = cache_incr(f"cb_fail:{name}", 1, expire_seconds=cool_seconds)
    if fails >= fail_threshold:
        cache_set(f"cb_open:{name}", True, ttl=cool_seconds)


def stats_cache_key(business_id: str) -> str:
    return f"inv:stats:{business_id}"


def invalidate_inventory_cache(business_id: str) -> None:
    cache_del(stats_cache_key(business_id))
