import logging
import threading
import time

from redis.exceptions import RedisError

from wechi.core.cache import connect_redis

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window attempt counter.

    Each key counts attempts within a window that starts at its first
    attempt; ``reset`` clears a key early (a successful login forgives the
    failed attempts before it).
    """

    def __init__(self, redis_url: str | None = None, key_prefix: str = "wechi") -> None:
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()
        self._key_prefix = key_prefix
        self._redis = connect_redis(redis_url)

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:attempts:{key}"

    def _count_redis(self, key: str, window_seconds: int) -> int | None:
        if self._redis is None:
            return None
        redis_key = self._redis_key(key)
        try:
            count = int(self._redis.incr(redis_key))
            if count == 1:
                self._redis.expire(redis_key, window_seconds)
        except RedisError as exc:
            logger.warning("Redis attempt counter failed for %s: %s", key, exc)
            return None
        return count

    def _count_local(self, key: str, window_seconds: int) -> int:
        now = time.time()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            return count

    def exceeded(self, key: str, limit: int, window_seconds: int) -> bool:
        """Count one attempt for ``key``; True once the window holds more than ``limit``."""
        limit = max(1, int(limit))
        window_seconds = max(1, int(window_seconds))

        count = self._count_redis(key, window_seconds)
        if count is None:
            count = self._count_local(key, window_seconds)
        return count > limit

    def reset(self, key: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(self._redis_key(key))
            except RedisError as exc:
                logger.warning("Redis attempt reset failed for %s: %s", key, exc)
        with self._lock:
            self._windows.pop(key, None)
