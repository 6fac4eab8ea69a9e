import pathlib
import sys
import time
import unittest

BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from wechi.core.cache import TimedCache, connect_redis
from wechi.core.rate_limit import RateLimiter


class SharedRedis:
    """Dict-backed stand-in for the Redis server that several workers share."""

    def __init__(self) -> None:
        self.store: dict[bytes, bytes] = {}
        self.expiries: dict[bytes, int] = {}

    def get(self, key):
        return self.store.get(key.encode())

    def setex(self, key, ttl, value):
        self.store[key.encode()] = value

    def scan_iter(self, match, count=None):
        prefix = match.rstrip("*").encode()
        return [k for k in list(self.store) if k.startswith(prefix)]

    def delete(self, key):
        if isinstance(key, str):
            key = key.encode()
        self.store.pop(key, None)
        self.expiries.pop(key, None)

    def incr(self, key):
        raw = key.encode()
        self.store[raw] = str(int(self.store.get(raw, b"0")) + 1).encode()
        return int(self.store[raw])

    def expire(self, key, seconds):
        self.expiries[key.encode()] = seconds


def worker_cache(redis) -> TimedCache:
    cache = TimedCache(redis_url=None, key_prefix="test")
    cache._redis = redis
    return cache


class StateUtilityTests(unittest.TestCase):
    def test_connect_redis_without_url_is_disabled(self):
        self.assertIsNone(connect_redis(None))
        self.assertIsNone(connect_redis(""))

    def test_unreachable_redis_falls_back_to_memory(self):
        cache = TimedCache(redis_url="redis://127.0.0.1:1/0", key_prefix="test")
        cache.set("7:dashboard:2026-10", {"summary": {}}, ttl=30)
        self.assertEqual(cache.get("7:dashboard:2026-10"), {"summary": {}})

    def test_timed_cache_invalidates_one_user_only(self):
        cache = TimedCache(redis_url=None, key_prefix="test")
        cache.set("7:dashboard:2026-10", {"ok": True}, ttl=30)
        cache.set("70:dashboard:2026-10", {"ok": True}, ttl=30)

        cache.invalidate_prefix("7:")

        self.assertIsNone(cache.get("7:dashboard:2026-10"))
        self.assertEqual(cache.get("70:dashboard:2026-10"), {"ok": True})

    def test_timed_cache_local_expiry(self):
        cache = TimedCache(redis_url=None, key_prefix="test")
        cache.set("k", 123, ttl=1)
        self.assertEqual(cache.get("k"), 123)
        time.sleep(1.05)
        self.assertIsNone(cache.get("k"))

    def test_rate_limiter_local_window_behavior(self):
        limiter = RateLimiter(redis_url=None, key_prefix="test")
        key = "login:ip:127.0.0.1"

        self.assertFalse(limiter.exceeded(key, limit=2, window_seconds=60))
        self.assertFalse(limiter.exceeded(key, limit=2, window_seconds=60))
        self.assertTrue(limiter.exceeded(key, limit=2, window_seconds=60))
        self.assertFalse(limiter.exceeded("login:ip:10.0.0.1", limit=2, window_seconds=60))

    def test_invalidation_by_one_worker_is_seen_by_another(self):
        redis = SharedRedis()
        worker_a = worker_cache(redis)
        worker_b = worker_cache(redis)
        worker_b.set("1:dashboard:2026-10", {"summary": {"balance": 10}}, ttl=60)
        self.assertEqual(worker_a.get("1:dashboard:2026-10"), {"summary": {"balance": 10}})

        worker_a.invalidate_prefix("1:")

        self.assertIsNone(worker_b.get("1:dashboard:2026-10"))
        self.assertIsNone(worker_a.get("1:dashboard:2026-10"))

    def test_rate_limiter_reset_reopens_the_key(self):
        limiter = RateLimiter(redis_url=None, key_prefix="test")
        key = "login:user:abebe@example.com"
        for _ in range(3):
            limiter.exceeded(key, limit=2, window_seconds=60)
        self.assertTrue(limiter.exceeded(key, limit=2, window_seconds=60))

        limiter.reset(key)

        self.assertFalse(limiter.exceeded(key, limit=2, window_seconds=60))

    def test_rate_limiter_shared_counter_expires_with_window(self):
        redis = SharedRedis()
        limiter = RateLimiter(redis_url=None, key_prefix="test")
        limiter._redis = redis
        key = "register:ip:10.0.0.1"

        self.assertFalse(limiter.exceeded(key, limit=1, window_seconds=900))
        self.assertTrue(limiter.exceeded(key, limit=1, window_seconds=900))
        self.assertEqual(redis.expiries, {b"test:attempts:register:ip:10.0.0.1": 900})

        limiter.reset(key)
        self.assertEqual(redis.store, {})


if __name__ == "__main__":
    unittest.main()
