# db.py
import logging
from contextlib import contextmanager

from psycopg_pool import ConnectionPool
from psycopg.rows import dict_row

from config import DATABASE_URL, DB_POOL_MIN, DB_POOL_MAX, DB_SEARCH_PATH

logger = logging.getLogger(__name__)

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL (or DB_HOST) is not set")


def _configure(conn):
    # every pooled connection sees the three module schemas unqualified
    conn.execute(f"SET search_path TO {DB_SEARCH_PATH}")
    conn.commit()


# IMPORTANT: open=False so we control lifecycle from FastAPI startup/shutdown
pool = ConnectionPool(
    conninfo=DATABASE_URL,
    min_size=DB_POOL_MIN,
    max_size=DB_POOL_MAX,
    kwargs={"row_factory": dict_row},
    configure=_configure,
    open=False,
)


def open_pool():
    pool.open()
    logger.info("db pool open (min=%s max=%s)", DB_POOL_MIN, DB_POOL_MAX)


def close_pool():
    pool.close()
    logger.info("db pool closed")


@contextmanager
def get_conn():
    with pool.connection() as conn:
        yield conn


def query_db(sql: str, params=()):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            if cur.description:
                return cur.fetchall()
            return []


def query_one(sql: str, params=()):
    rows = query_db(sql, params)
    return rows[0] if rows else None


@contextmanager
def with_db_cursor():
    with get_conn() as conn:
        with conn.cursor() as cur:
            yield conn, cur


@contextmanager
def transaction():
    """
    One DB transaction: commit when the block finishes, rollback on any error.
    Yields the cursor only; callers that need the connection use with_db_cursor().
    """
    with with_db_cursor() as (conn, cur):
        try:
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
