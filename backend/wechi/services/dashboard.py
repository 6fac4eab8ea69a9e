import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

ZERO = Decimal("0")
CAUTION_PERCENT = Decimal("75")
WARNING_PERCENT = Decimal("90")


def as_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def month_window(reference_date: date) -> tuple[date, date]:
    last_day = calendar.monthrange(reference_date.year, reference_date.month)[1]
    return reference_date.replace(day=1), reference_date.replace(day=last_day)


def alert_level(percent: Decimal) -> str | None:
    if percent >= WARNING_PERCENT:
        return "warning"
    if percent >= CAUTION_PERCENT:
        return "caution"
    return None


def budget_status(budget: dict[str, Any], spent: Decimal) -> dict[str, Any]:
    # monthly_limit is positive: enforced by request validation and a CHECK constraint.
    limit = as_decimal(budget["monthly_limit"])
    percent = spent / limit * 100
    return {
        "category": budget["category"],
        "monthly_limit": float(limit),
        "spent": float(spent),
        "percent_used": float(percent.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)),
        "alert": alert_level(percent),
    }


def summarize(cur, user_id: int, reference_date: date, currency: str) -> dict[str, Any]:
    start_of_month, end_of_month = month_window(reference_date)

    cur.execute(
        """
        SELECT COALESCE(SUM(CASE WHEN type='income' THEN amount ELSE 0 END), 0) AS total_income,
               COALESCE(SUM(CASE WHEN type='expense' THEN amount ELSE 0 END), 0) AS total_expenses
        FROM transactions
        WHERE user_id=%s AND date BETWEEN %s AND %s
        """,
        (user_id, start_of_month, end_of_month),
    )
    totals = cur.fetchone() or {}
    total_income = as_decimal(totals.get("total_income"))
    total_expenses = as_decimal(totals.get("total_expenses"))

    cur.execute(
        """
        SELECT category, monthly_limit
        FROM budgets
        WHERE user_id=%s AND month=%s
        ORDER BY category
        """,
        (user_id, start_of_month),
    )
    budgets = cur.fetchall()

    cur.execute(
        """
        SELECT category, SUM(amount) AS spent
        FROM transactions
        WHERE user_id=%s AND type='expense' AND date BETWEEN %s AND %s
        GROUP BY category
        """,
        (user_id, start_of_month, end_of_month),
    )
    spent_by_category = {row["category"]: as_decimal(row["spent"]) for row in cur.fetchall()}

    return {
        "summary": {
            "total_income": float(total_income),
            "total_expenses": float(total_expenses),
            "balance": float(total_income - total_expenses),
            "currency": currency,
        },
        "budgets": [budget_status(b, spent_by_category.get(b["category"], ZERO)) for b in budgets],
    }
