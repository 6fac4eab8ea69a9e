import logging
import pickle
import threading
import time
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def connect_redis(redis_url: str | None) -> Redis | None:
    """Return a live Redis client, or None when Redis is unset or unreachable."""
    if not redis_url:
        return None
    try:
        client = Redis.from_url(redis_url, decode_responses=False)
        client.ping()
    except RedisError as exc:
        logger.warning("Redis unavailable, using in-process state: %s", exc)
        return None
    return client


class TimedCache:
    """TTL cache for per-user dashboard payloads.

    With Redis reachable, Redis is the only source of truth for reads so an
    invalidation by one worker is seen by all of them. The in-process copy
    is consulted only when Redis is absent or a Redis call fails.
    """

    def __init__(self, redis_url: str | None = None, key_prefix: str = "wechi") -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._key_prefix = key_prefix
        self._redis = connect_redis(redis_url)

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:cache:{key}"

    def get(self, key: str) -> Any | None:
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(key))
                return pickle.loads(raw) if raw is not None else None
            except (RedisError, pickle.PickleError, EOFError) as exc:
                logger.debug("Redis cache read failed for %s: %s", key, exc)

        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            expires_at, value = entry
            if time.time() > expires_at:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        ttl = max(1, ttl)
        if self._redis is not None:
            try:
                self._redis.setex(self._redis_key(key), ttl, pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL))
            except (RedisError, pickle.PickleError, TypeError) as exc:
                logger.debug("Redis cache write failed for %s: %s", key, exc)

        with self._lock:
            self._entries[key] = (time.time() + ttl, value)

    def invalidate_prefix(self, prefix: str) -> None:
        if self._redis is not None:
            try:
                for redis_key in self._redis.scan_iter(match=self._redis_key(f"{prefix}*"), count=200):
                    self._redis.delete(redis_key)
            except RedisError as exc:
                logger.debug("Redis cache invalidation failed for %s: %s", prefix, exc)

        with self._lock:
            for key in [k for k in self._entries if k.startswith(prefix)]:
                self._entries.pop(key, None)
