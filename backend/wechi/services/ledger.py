from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import HTTPException

from wechi.core.config import settings
from wechi.services.state import cache

TRANSACTION_COLUMNS = """
    id, user_id, type, amount, description, category, date, recurring_id, created_at
"""


def cache_get(key: str) -> Any | None:
    return cache.get(key)


def cache_set(key: str, value: Any, ttl: int) -> None:
    cache.set(key, value, ttl)


def invalidate_user_cache(user_id: int) -> None:
    cache.invalidate_prefix(f"{user_id}:")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def today_local() -> date:
    """Calendar day in the configured TZ; recurring rules and defaults use it."""
    return datetime.now(ZoneInfo(settings.tz)).date()


def parse_month(month: str) -> date:
    try:
        dt = datetime.strptime(month, "%Y-%m")
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid month format, expected YYYY-MM")
    return dt.date()


def parse_date(value: str, field_name: str = "date") -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}, expected YYYY-MM-DD")


def iso_z(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def serialize_row(row: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            out[key] = float(value)
        elif isinstance(value, datetime):
            out[key] = iso_z(value)
        elif isinstance(value, date):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out


def list_transactions(
    cur,
    user_id: int,
    from_date: date | None = None,
    to_date: date | None = None,
    tx_type: str | None = None,
    category: str | None = None,
) -> list[dict[str, Any]]:
    filters = ["user_id=%s"]
    params: list[Any] = [user_id]
    if from_date:
        filters.append("date >= %s")
        params.append(from_date)
    if to_date:
        filters.append("date <= %s")
        params.append(to_date)
    if tx_type:
        if tx_type not in ("income", "expense"):
            raise HTTPException(status_code=400, detail="type must be income or expense")
        filters.append("type=%s")
        params.append(tx_type)
    if category:
        filters.append("category=%s")
        params.append(category.strip())

    cur.execute(
        f"""
        SELECT {TRANSACTION_COLUMNS}
        FROM transactions
        WHERE {' AND '.join(filters)}
        ORDER BY date DESC, created_at DESC
        """,
        params,
    )
    return cur.fetchall()
