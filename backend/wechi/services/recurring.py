"""Materialize recurring-transaction rules into concrete ledger rows.

A rule produces at most one transaction per day. Re-running on the same
day is a no-op: a generated row is recognized by its marker description
on that date, and the partial unique index on
``(user_id, recurring_id, date)`` rejects a second insert that slips past
the marker check under concurrent calls.
"""

import logging
from datetime import date, datetime
from typing import Any

logger = logging.getLogger(__name__)

MARKER_PREFIX = "[Recurring] "


def marker_description(rule: dict[str, Any]) -> str:
    return f"{MARKER_PREFIX}{rule.get('description') or rule['category']}"


def is_rule_due(rule: dict[str, Any], today: date) -> bool:
    start_date = rule["start_date"]
    diff_days = (today - start_date).days
    frequency = rule.get("frequency")
    if frequency == "daily":
        return True
    if frequency == "weekly":
        return diff_days >= 0 and diff_days % 7 == 0
    if frequency == "monthly":
        # A start day missing from the current month (e.g. the 31st) never matches.
        return today.day == start_date.day
    return False


def fetch_active_rules(cur, user_id: int, today: date) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT id, type, amount, description, category, frequency, start_date, end_date
        FROM recurring_transactions
        WHERE user_id=%s
          AND start_date <= %s
          AND (end_date IS NULL OR end_date >= %s)
        ORDER BY id
        """,
        (user_id, today, today),
    )
    return cur.fetchall()


def generated_exists(cur, user_id: int, description: str, today: date) -> bool:
    cur.execute(
        "SELECT id FROM transactions WHERE user_id=%s AND description=%s AND date=%s LIMIT 1",
        (user_id, description, today),
    )
    return cur.fetchone() is not None


def insert_generated(cur, user_id: int, rule: dict[str, Any], description: str, today: date) -> bool:
    cur.execute(
        """
        INSERT INTO transactions (user_id, type, amount, description, category, date, recurring_id)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (user_id, recurring_id, date) WHERE recurring_id IS NOT NULL
        DO NOTHING
        RETURNING id
        """,
        (user_id, rule["type"], rule["amount"], description, rule["category"], today, rule["id"]),
    )
    return cur.fetchone() is not None


def generate_recurring(conn, user_id: int, today: date | datetime) -> int:
    """Create today's transactions for every due rule of ``user_id``.

    Each insert is committed on its own. An error aborts the remaining
    rules and propagates; rows committed before it are kept.
    """
    if isinstance(today, datetime):
        today = today.date()

    with conn.cursor() as cur:
        rules = fetch_active_rules(cur, user_id, today)
    conn.commit()

    generated = 0
    for rule in rules:
        if not is_rule_due(rule, today):
            continue
        description = marker_description(rule)
        with conn.cursor() as cur:
            if generated_exists(cur, user_id, description, today):
                conn.rollback()
                continue
            created = insert_generated(cur, user_id, rule, description, today)
        conn.commit()
        if created:
            generated += 1
        else:
            logger.info("Recurring rule %s already generated for %s", rule["id"], today.isoformat())

    logger.info("Generated %d recurring transaction(s) for user %s on %s", generated, user_id, today.isoformat())
    return generated
