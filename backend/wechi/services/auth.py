import hashlib
import logging
import secrets
from typing import Any

from fastapi import HTTPException, Request
from passlib.hash import bcrypt

from wechi.core.config import settings
from wechi.db.pool import db_conn
from wechi.services.ledger import now_utc
from wechi.services.state import rate_limiter

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "wgk_"


def get_client_ip(req: Request) -> str:
    forwarded = req.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = req.headers.get("x-real-ip", "")
    if real_ip:
        return real_ip.strip()
    if req.client:
        return req.client.host
    return "unknown"


def hash_api_key(plain: str) -> str:
    return hashlib.sha256(plain.encode("utf-8")).hexdigest()


def mask_api_key(plain: str) -> str:
    visible = max(6, len(plain) // 2)
    if visible >= len(plain):
        visible = max(1, len(plain) - 1)
    return plain[:visible] + ("*" * (len(plain) - visible))


def create_api_key(cur, user_id: int, label: str = "default") -> str:
    plain = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
    # One active key per user: revoke the current one first.
    cur.execute(
        "UPDATE api_keys SET revoked_at=%s WHERE user_id=%s AND revoked_at IS NULL",
        (now_utc(), user_id),
    )
    cur.execute(
        """
        INSERT INTO api_keys (user_id, key_hash, key_prefix, key_masked, label)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (user_id, hash_api_key(plain), plain[:12], mask_api_key(plain), label),
    )
    return plain


def get_active_api_key(cur, user_id: int) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT api_key_id, key_masked, created_at, last_used_at
        FROM api_keys
        WHERE user_id=%s AND revoked_at IS NULL
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (user_id,),
    )
    return cur.fetchone()


def parse_bearer_token(req: Request) -> str | None:
    header = req.headers.get("authorization", "")
    if not header:
        return None
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Access denied. Malformed authorization header.")
    return parts[1].strip()


def get_user_id_by_api_key(token: str) -> int:
    key_hash = hash_api_key(token)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "SELECT user_id FROM api_keys WHERE key_hash=%s AND revoked_at IS NULL",
            (key_hash,),
        )
        row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=401, detail="Invalid API key")
        cur.execute("UPDATE api_keys SET last_used_at=%s WHERE key_hash=%s", (now_utc(), key_hash))
        conn.commit()
        return int(row["user_id"])


def require_user(req: Request) -> int:
    """Resolve the caller from a bearer API key, falling back to the session cookie."""
    token = parse_bearer_token(req)
    if token:
        return get_user_id_by_api_key(token)
    user_id = (req.session or {}).get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Access denied. Not authenticated.")
    return int(user_id)


def enforce_register_rate_limit(req: Request) -> None:
    client_ip = get_client_ip(req)
    if rate_limiter.exceeded(
        f"register:ip:{client_ip}",
        settings.register_rate_limit,
        settings.register_rate_window,
    ):
        logger.warning("Register rate limit hit for %s", client_ip)
        raise HTTPException(status_code=429, detail="Too many registration attempts. Try again later.")


def login_user_key(email: str) -> str:
    return f"login:user:{normalize_email(email)}"


def enforce_login_rate_limit(req: Request, email: str) -> None:
    client_ip = get_client_ip(req)
    if rate_limiter.exceeded(f"login:ip:{client_ip}", settings.login_rate_limit, settings.login_rate_window):
        logger.warning("Login rate limit hit for %s", client_ip)
        raise HTTPException(status_code=429, detail="Too many login attempts. Try again later.")
    if rate_limiter.exceeded(
        login_user_key(email),
        settings.login_user_rate_limit,
        settings.login_rate_window,
    ):
        logger.warning("Login rate limit hit for account %s", email)
        raise HTTPException(status_code=429, detail="Too many login attempts. Try again later.")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def register_user(cur, data: dict[str, Any]) -> dict[str, Any]:
    name = (data.get("name") or "").strip()
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    if not settings.email_re.fullmatch(email):
        raise HTTPException(status_code=400, detail="Valid email required")
    if len(password) < settings.password_min_len:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {settings.password_min_len} characters",
        )
    if len(password.encode("utf-8")) > 72:
        raise HTTPException(status_code=400, detail="Password too long (max 72 bytes)")

    cur.execute("SELECT 1 FROM users WHERE email=%s", (email,))
    if cur.fetchone():
        raise HTTPException(status_code=400, detail="User already exists")

    cur.execute(
        "INSERT INTO users (name, email, password_hash) VALUES (%s, %s, %s) RETURNING id, name, email",
        (name, email, bcrypt.hash(password)),
    )
    return cur.fetchone()


def authenticate_user(cur, email: str, password: str) -> dict[str, Any]:
    if len(password.encode("utf-8")) > 72:
        raise HTTPException(status_code=400, detail="Invalid credentials")
    cur.execute(
        "SELECT id, name, email, password_hash FROM users WHERE email=%s",
        (normalize_email(email),),
    )
    user = cur.fetchone()
    if not user or not bcrypt.verify(password, user["password_hash"]):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    rate_limiter.reset(login_user_key(email))
    return {"id": user["id"], "name": user["name"], "email": user["email"]}
