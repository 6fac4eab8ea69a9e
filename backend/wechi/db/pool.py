import logging
from contextlib import contextmanager
from pathlib import Path

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from wechi.core.config import settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

DB_POOL = ConnectionPool(
    settings.database_url,
    min_size=settings.db_pool_min,
    max_size=settings.db_pool_max,
    timeout=settings.db_pool_timeout,
    max_waiting=settings.db_pool_max_waiting,
    open=False,
    kwargs={"row_factory": dict_row},
)


def open_db_pool() -> None:
    DB_POOL.open()
    if settings.db_auto_schema:
        apply_schema()


def close_db_pool() -> None:
    DB_POOL.close()


def apply_schema() -> None:
    # Every statement in schema.sql is idempotent (IF NOT EXISTS).
    with DB_POOL.connection() as conn:
        conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        conn.commit()
    logger.info("Database schema ensured from %s", SCHEMA_PATH.name)


@contextmanager
def db_conn():
    with DB_POOL.connection() as conn:
        yield conn
