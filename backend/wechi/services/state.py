from wechi.core.cache import TimedCache
from wechi.core.config import settings
from wechi.core.rate_limit import RateLimiter

cache = TimedCache(redis_url=settings.redis_url, key_prefix=settings.redis_prefix)
rate_limiter = RateLimiter(redis_url=settings.redis_url, key_prefix=settings.redis_prefix)
