import os
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_auto_schema: bool
    redis_url: str | None
    redis_prefix: str
    session_secret: str
    cookie_secure: bool
    cors_origin: str
    tz: str
    currency: str
    log_level: str
    summary_cache_ttl: int
    login_rate_limit: int
    login_rate_window: int
    login_user_rate_limit: int
    register_rate_limit: int
    register_rate_window: int
    password_min_len: int
    email_re: re.Pattern[str]
    db_pool_min: int
    db_pool_max: int
    db_pool_timeout: float
    db_pool_max_waiting: int


def load_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL", "")
    session_secret = os.getenv("SESSION_SECRET")
    if not database_url:
        raise RuntimeError("DATABASE_URL is required")
    if not session_secret:
        raise RuntimeError("SESSION_SECRET is required")

    email_re = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    db_pool_min = max(1, int(os.getenv("DB_POOL_MIN", "1")))
    db_pool_max = max(db_pool_min, int(os.getenv("DB_POOL_MAX", "10")))

    return Settings(
        database_url=database_url,
        db_auto_schema=os.getenv("DB_AUTO_SCHEMA", "false").lower() == "true",
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        redis_prefix=(os.getenv("REDIS_PREFIX") or "wechi").strip() or "wechi",
        session_secret=session_secret,
        cookie_secure=os.getenv("COOKIE_SECURE", "false").lower() == "true",
        cors_origin=(os.getenv("CORS_ORIGIN") or "http://localhost:5173").strip(),
        tz=os.getenv("TZ", "Africa/Addis_Ababa"),
        currency=(os.getenv("CURRENCY") or "ETB").strip().upper() or "ETB",
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        summary_cache_ttl=int(os.getenv("SUMMARY_CACHE_TTL", "30")),
        login_rate_limit=int(os.getenv("LOGIN_RATE_LIMIT", "10")),
        login_rate_window=int(os.getenv("LOGIN_RATE_WINDOW", "300")),
        login_user_rate_limit=int(os.getenv("LOGIN_USER_RATE_LIMIT", "5")),
        register_rate_limit=int(os.getenv("REGISTER_RATE_LIMIT", "5")),
        register_rate_window=int(os.getenv("REGISTER_RATE_WINDOW", "900")),
        password_min_len=int(os.getenv("PASSWORD_MIN_LEN", "6")),
        email_re=email_re,
        db_pool_min=db_pool_min,
        db_pool_max=db_pool_max,
        db_pool_timeout=float(os.getenv("DB_POOL_TIMEOUT", "30")),
        db_pool_max_waiting=int(os.getenv("DB_POOL_MAX_WAITING", "100")),
    )


settings = load_settings()
