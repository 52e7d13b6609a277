import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

import redis

from .cache import _client as _redis_client

logger = logging.getLogger(__name__)

_guard = threading.Lock()
_local_locks: Dict[str, threading.Lock] = {}

# Redis lock lease; long enough for one alert batch send
LOCK_TIMEOUT_SECONDS = 120
LOCK_WAIT_SECONDS = 60


def _local_lock(key: str) -> threading.Lock:
    with _guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _local_locks[key] = lock
        return lock


@contextmanager
def tenant_lock(business_id: str, scope: str) -> Iterator[None]:
    """Serialize one kind of work per business.

    Uses a Redis lock when REDIS_URL is configured so several API/worker
    processes agree; falls back to an in-process lock.
    """
    key = f"lock:{scope}:{business_id}"
    client = _redis_client()
    if client is not None:
        lock = client.lock(key, timeout=LOCK_TIMEOUT_SECONDS, blocking_timeout=LOCK_WAIT_SECONDS)
        if not lock.acquire():
            raise TimeoutError(f"could not acquire {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError:
                # lease ran out mid-work; the key is already gone or someone else's
                logger.warning("tenant_lock_release_failed", extra={"lock_key": key})
        return
    with _local_lock(key):
        yield
