"""
Database connection pool for the search sync worker

Provides a thread-safe PostgreSQL connection pool using psycopg2.
Entity-type passes may run on worker threads, so every store call
borrows a connection through `get_connection()`.

Usage:
    from search_sync.db_pool import get_connection

    with get_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT ...")
            rows = cur.fetchall()
        # conn auto-commits on success, auto-rollbacks on exception
"""

import logging
import threading
from contextlib import contextmanager

import psycopg2
from psycopg2 import pool

from search_sync import config

logger = logging.getLogger("search-sync.db_pool")

# ---------------------------------------------------------------------------
# Pool singleton with double-check locking
# ---------------------------------------------------------------------------
_pool = None
_pool_lock = threading.Lock()


def _db_params() -> dict:
    return dict(
        host=config.DB_HOST,
        port=int(config.DB_PORT),
        dbname=config.DB_NAME,
        user=config.DB_USER,
        password=config.DB_PASS,
    )


def init_pool(minconn: int = None, maxconn: int = None):
    """
    Initialize the connection pool.  Called lazily on first `get_connection()`.
    """
    global _pool
    if minconn is None:
        minconn = config.DB_POOL_MIN_CONN
    if maxconn is None:
        maxconn = config.DB_POOL_MAX_CONN

    params = _db_params()
    _pool = pool.ThreadedConnectionPool(minconn, maxconn, **params)
    logger.info(
        "Database connection pool initialized  min=%d  max=%d  host=%s  db=%s",
        minconn, maxconn, params["host"], params["dbname"],
    )


def get_pool() -> pool.ThreadedConnectionPool:
    """Return the pool singleton, creating it on first call."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:          # double-check after acquiring lock
                init_pool()
    return _pool


@contextmanager
def get_connection():
    """
    Borrow a connection from the pool.

    * On normal exit  → ``COMMIT`` + return to pool
    * On exception    → ``ROLLBACK`` + return to pool + re-raise
    * Broken connection (server restart, network drop) → closed instead
      of returned, so the next pass gets a fresh one
    """
    p = get_pool()
    conn = p.getconn()
    broken = False
    try:
        yield conn
    except Exception:
        try:
            conn.rollback()
        except psycopg2.Error as e:
            broken = True
            logger.warning("Discarding connection after failed rollback: %s", e)
        raise
    else:
        conn.commit()
    finally:
        p.putconn(conn, close=broken or bool(conn.closed))


def close_pool():
    """Shut down the pool (call on worker exit)."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("Database connection pool closed")
