import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response
from psycopg.errors import UniqueViolation

from wechi.core.config import settings
from wechi.db.pool import db_conn
from wechi.models.schemas import (
    BudgetRequest,
    DashboardResponse,
    LoginRequest,
    MessageResponse,
    RecurringRuleRequest,
    RegisterRequest,
    TransactionRequest,
)
from wechi.services.auth import (
    authenticate_user,
    create_api_key,
    enforce_login_rate_limit,
    enforce_register_rate_limit,
    get_active_api_key,
    register_user,
    require_user,
)
from wechi.services.dashboard import summarize
from wechi.services.export import EXPORT_FORMATS, export_transactions_file
from wechi.services.ledger import (
    TRANSACTION_COLUMNS,
    cache_get,
    cache_set,
    invalidate_user_cache,
    list_transactions,
    parse_date,
    parse_month,
    serialize_row,
    today_local,
)
from wechi.services.recurring import generate_recurring

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.get("/health")
def health():
    return {"ok": True}


@router.post("/auth/register", status_code=201)
def register(req: Request, payload: RegisterRequest):
    enforce_register_rate_limit(req)
    with db_conn() as conn, conn.cursor() as cur:
        try:
            user = register_user(cur, payload.model_dump())
            conn.commit()
        except HTTPException:
            conn.rollback()
            raise
        except UniqueViolation:
            conn.rollback()
            raise HTTPException(status_code=400, detail="User already exists")

    logger.info("Registered user %s", user["id"])
    return {"ok": True, "message": "User registered successfully", "user": user}


@router.post("/auth/login")
def login(req: Request, payload: LoginRequest):
    enforce_login_rate_limit(req, payload.email.lower())
    with db_conn() as conn, conn.cursor() as cur:
        user = authenticate_user(cur, payload.email, payload.password)

    req.session["user_id"] = user["id"]
    req.session["name"] = user["name"]
    return {"ok": True, "user": user}


@router.post("/auth/logout")
def logout(req: Request):
    req.session.clear()
    return {"ok": True}


@router.get("/me")
def me(req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT id, name, email FROM users WHERE id=%s", (user_id,))
        user = cur.fetchone()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user, "currency": settings.currency, "tz": settings.tz}


@router.get("/api-key")
def get_api_key(req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        key_meta = get_active_api_key(cur, user_id)
    if not key_meta:
        raise HTTPException(status_code=404, detail="API key not found")
    return {"api_key": serialize_row(key_meta)}


@router.post("/api-key/reset")
def reset_api_key(req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        new_key = create_api_key(cur, user_id, "reset")
        key_meta = get_active_api_key(cur, user_id)
        conn.commit()
    if not key_meta:
        raise HTTPException(status_code=500, detail="Failed to generate API key")
    return {"ok": True, "api_key": new_key, "masked": key_meta["key_masked"]}


@router.get("/transactions")
def get_transactions(
    req: Request,
    from_date: str | None = None,
    to_date: str | None = None,
    type: str | None = None,
    category: str | None = None,
):
    user_id = require_user(req)
    start = parse_date(from_date, "from_date") if from_date else None
    end = parse_date(to_date, "to_date") if to_date else None
    with db_conn() as conn, conn.cursor() as cur:
        rows = list_transactions(cur, user_id, start, end, type, category)
    return [serialize_row(r) for r in rows]


@router.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: int, req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id=%s AND user_id=%s",
            (transaction_id, user_id),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Transaction not found or access denied")
    return serialize_row(row)


@router.post("/transactions", status_code=201)
def create_transaction(req: Request, payload: TransactionRequest):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO transactions (user_id, type, amount, description, category, date)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {TRANSACTION_COLUMNS}
            """,
            (
                user_id,
                payload.type,
                payload.amount,
                payload.description or None,
                payload.category,
                payload.date or today_local(),
            ),
        )
        row = cur.fetchone()
        conn.commit()

    invalidate_user_cache(user_id)
    return serialize_row(row)


@router.put("/transactions/{transaction_id}")
def update_transaction(transaction_id: int, req: Request, payload: TransactionRequest):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            f"""
            UPDATE transactions
            SET type=%s, amount=%s, description=%s, category=%s, date=%s
            WHERE id=%s AND user_id=%s
            RETURNING {TRANSACTION_COLUMNS}
            """,
            (
                payload.type,
                payload.amount,
                payload.description or None,
                payload.category,
                payload.date or today_local(),
                transaction_id,
                user_id,
            ),
        )
        row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=404, detail="Transaction not found or access denied")
        conn.commit()

    invalidate_user_cache(user_id)
    return serialize_row(row)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(transaction_id: int, req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "DELETE FROM transactions WHERE id=%s AND user_id=%s RETURNING id",
            (transaction_id, user_id),
        )
        if not cur.fetchone():
            raise HTTPException(status_code=404, detail="Transaction not found or access denied")
        conn.commit()

    invalidate_user_cache(user_id)
    return {"message": "Transaction deleted"}


@router.get("/budgets")
def get_budgets(req: Request, month: str | None = None):
    user_id = require_user(req)
    sql = "SELECT id, user_id, category, monthly_limit, month, created_at FROM budgets WHERE user_id=%s"
    params: list = [user_id]
    if month:
        sql += " AND month=%s"
        params.append(parse_month(month))
    sql += " ORDER BY category, month DESC"
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(sql, params)
        rows = cur.fetchall()
    return [serialize_row(r) for r in rows]


@router.post("/budgets", status_code=201)
def upsert_budget(req: Request, payload: BudgetRequest):
    user_id = require_user(req)
    month = payload.month or today_local().replace(day=1)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO budgets (user_id, category, monthly_limit, month)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id, category, month)
            DO UPDATE SET monthly_limit=EXCLUDED.monthly_limit
            RETURNING id, user_id, category, monthly_limit, month, created_at
            """,
            (user_id, payload.category, payload.monthly_limit, month),
        )
        row = cur.fetchone()
        conn.commit()

    invalidate_user_cache(user_id)
    return serialize_row(row)


@router.delete("/budgets/{budget_id}")
def delete_budget(budget_id: int, req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "DELETE FROM budgets WHERE id=%s AND user_id=%s RETURNING id",
            (budget_id, user_id),
        )
        if not cur.fetchone():
            raise HTTPException(status_code=404, detail="Budget not found or access denied")
        conn.commit()

    invalidate_user_cache(user_id)
    return {"message": "Budget deleted"}


@router.get("/recurring")
def get_recurring(req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            SELECT id, user_id, type, amount, description, category, frequency, start_date, end_date, created_at
            FROM recurring_transactions
            WHERE user_id=%s
            ORDER BY start_date DESC
            """,
            (user_id,),
        )
        rows = cur.fetchall()
    return [serialize_row(r) for r in rows]


@router.post("/recurring", status_code=201)
def create_recurring(req: Request, payload: RecurringRuleRequest):
    user_id = require_user(req)
    start_date = payload.start_date or today_local()
    if payload.end_date is not None and payload.end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date must be on or after start_date")
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO recurring_transactions
              (user_id, type, amount, description, category, frequency, start_date, end_date)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, type, amount, description, category, frequency, start_date, end_date, created_at
            """,
            (
                user_id,
                payload.type,
                payload.amount,
                payload.description or None,
                payload.category,
                payload.frequency,
                start_date,
                payload.end_date,
            ),
        )
        row = cur.fetchone()
        conn.commit()
    return serialize_row(row)


@router.delete("/recurring/{rule_id}")
def delete_recurring(rule_id: int, req: Request):
    user_id = require_user(req)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            "DELETE FROM recurring_transactions WHERE id=%s AND user_id=%s RETURNING id",
            (rule_id, user_id),
        )
        if not cur.fetchone():
            raise HTTPException(status_code=404, detail="Recurring rule not found")
        conn.commit()
    return {"message": "Recurring rule deleted"}


@router.post("/recurring/generate", response_model=MessageResponse)
def generate_recurring_transactions(req: Request):
    user_id = require_user(req)
    with db_conn() as conn:
        generated = generate_recurring(conn, user_id, today_local())

    if generated:
        invalidate_user_cache(user_id)
    return {"message": f"{generated} recurring transaction(s) generated"}


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(req: Request, month: str | None = None):
    user_id = require_user(req)
    reference_date = parse_month(month) if month else today_local()
    cache_key = f"{user_id}:dashboard:{reference_date.strftime('%Y-%m')}"
    cached = cache_get(cache_key)
    if cached is not None:
        return cached

    with db_conn() as conn, conn.cursor() as cur:
        payload = summarize(cur, user_id, reference_date, settings.currency)

    cache_set(cache_key, payload, settings.summary_cache_ttl)
    return payload


@router.get("/export/transactions")
def export_transactions(req: Request, format: str = "xlsx"):
    user_id = require_user(req)
    export_format = (format or "xlsx").lower()
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="Invalid export format")

    with db_conn() as conn, conn.cursor() as cur:
        rows = list_transactions(cur, user_id)
        cur.execute("SELECT email FROM users WHERE id=%s", (user_id,))
        owner = cur.fetchone()

    if not rows:
        raise HTTPException(status_code=404, detail="No transactions found to export")

    export_payload = export_transactions_file(
        rows=rows,
        export_format=export_format,
        currency=settings.currency,
        owner=owner["email"] if owner else str(user_id),
        exported_on=today_local(),
    )
    logger.info("User %s exported %d transaction(s) as %s", user_id, len(rows), export_format)
    return Response(
        content=export_payload["content"],
        media_type=export_payload["media_type"],
        headers={"Content-Disposition": f'attachment; filename="{export_payload["filename"]}"'},
    )
