"""
Relational side of the sync engine.

Tables read and written here (owned by the application schema):

    search_index_update_queue     (id, type, created_at)   dirty queue
    search_index_pending_deletion (id, type, created_at)   deletion ledger
    search_indexer_state          (index_name PK, last_updated_at, docs_count,
                                   last_run_at, last_run_duration_ms, last_error)

Entity rows are read through the per-type SELECT in ``entities.py``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.extras

from search_sync.db_pool import get_connection, get_pool
from search_sync.errors import StoreReadError
from search_sync.reader import FetchFilter, build_fetch_query, dedupe_ids

log = logging.getLogger("search-sync.store")

ENSURE_STATE_SQL = """
    INSERT INTO search_indexer_state (index_name, docs_count)
    VALUES (%s, 0)
    ON CONFLICT (index_name) DO NOTHING
"""


class SearchSyncStore:
    """psycopg2-backed store; every call borrows a pooled connection."""

    # ── Entity reads ────────────────────────────────────────

    def fetch_entities(self, entity_type, fetch_filter: FetchFilter,
                       after_id: Optional[int], limit: int) -> List[Dict[str, Any]]:
        sql, params = build_fetch_query(entity_type, fetch_filter, after_id, limit)
        try:
            with get_connection() as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute(sql, params)
                    return [dict(r) for r in cur.fetchall()]
        except psycopg2.Error as e:
            raise StoreReadError(f"{entity_type.name}: entity read failed: {e}") from e

    # ── Snapshot ────────────────────────────────────────────

    def snapshot(self, index_name: str) -> Tuple[datetime, Tuple[int, ...]]:
        """
        Capture the pass's consistency point: the database clock and the
        de-duplicated dirty ids enqueued at or before it, in one transaction.
        """
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT clock_timestamp()")
                    snapshot_at = cur.fetchone()[0]
                    cur.execute(
                        """
                        SELECT id FROM search_index_update_queue
                        WHERE type = %s AND created_at <= %s
                        ORDER BY created_at, id
                        """,
                        (index_name, snapshot_at),
                    )
                    ids = dedupe_ids(r[0] for r in cur.fetchall())
        except psycopg2.Error as e:
            raise StoreReadError(f"{index_name}: dirty queue read failed: {e}") from e
        return snapshot_at, ids

    def enqueue_update(self, index_name: str, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        with get_connection() as conn:
            with conn.cursor() as cur:
                psycopg2.extras.execute_values(
                    cur,
                    "INSERT INTO search_index_update_queue (id, type, created_at) VALUES %s",
                    [(i, index_name) for i in ids],
                    template="(%s, %s, clock_timestamp())",
                )
        return len(ids)

    # ── Pending deletion ledger ─────────────────────────────

    def get_pending_deletions(self, index_name: str) -> Tuple[int, ...]:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT id FROM search_index_pending_deletion
                        WHERE type = %s ORDER BY created_at, id
                        """,
                        (index_name,),
                    )
                    return dedupe_ids(r[0] for r in cur.fetchall())
        except psycopg2.Error as e:
            raise StoreReadError(f"{index_name}: deletion ledger read failed: {e}") from e

    def delete_pending_deletions(self, index_name: str, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM search_index_pending_deletion WHERE type = %s AND id = ANY(%s)",
                    (index_name, list(ids)),
                )
                return cur.rowcount

    def enqueue_deletion(self, index_name: str, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        with get_connection() as conn:
            with conn.cursor() as cur:
                psycopg2.extras.execute_values(
                    cur,
                    "INSERT INTO search_index_pending_deletion (id, type, created_at) VALUES %s",
                    [(i, index_name) for i in ids],
                    template="(%s, %s, clock_timestamp())",
                )
        return len(ids)

    # ── Watermark state ─────────────────────────────────────

    def get_watermark(self, index_name: str) -> Optional[datetime]:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT last_updated_at FROM search_indexer_state WHERE index_name = %s",
                        (index_name,),
                    )
                    row = cur.fetchone()
                    return row[0] if row else None
        except psycopg2.Error as e:
            raise StoreReadError(f"{index_name}: watermark read failed: {e}") from e

    def commit_watermark(self, index_name: str, watermark: datetime,
                         dirty_ids: Sequence[int], snapshot_at: datetime,
                         docs_count: int, duration_ms: int,
                         replace_count: bool = False) -> int:
        """
        Advance the watermark and drop the consumed dirty rows in one
        transaction. Returns the number of queue rows removed.

        ``docs_count`` is added to the running total, or replaces it when
        ``replace_count`` is set (a full rebuild indexed everything).
        """
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(ENSURE_STATE_SQL, (index_name,))
                cur.execute(
                    """
                    UPDATE search_indexer_state
                    SET last_updated_at = GREATEST(COALESCE(last_updated_at, %s), %s),
                        docs_count = CASE WHEN %s THEN %s ELSE docs_count + %s END,
                        last_run_at = NOW(),
                        last_run_duration_ms = %s,
                        last_error = NULL
                    WHERE index_name = %s
                    """,
                    (watermark, watermark, replace_count, docs_count, docs_count,
                     duration_ms, index_name),
                )
                removed = 0
                if dirty_ids:
                    cur.execute(
                        """
                        DELETE FROM search_index_update_queue
                        WHERE type = %s AND id = ANY(%s) AND created_at <= %s
                        """,
                        (index_name, list(dirty_ids), snapshot_at),
                    )
                    removed = cur.rowcount
        return removed

    def record_failure(self, index_name: str, error: str, duration_ms: int) -> None:
        """Note the failure without touching the watermark."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(ENSURE_STATE_SQL, (index_name,))
                cur.execute(
                    """
                    UPDATE search_indexer_state
                    SET last_run_at = NOW(),
                        last_run_duration_ms = %s,
                        last_error = %s
                    WHERE index_name = %s
                    """,
                    (duration_ms, error[:2000], index_name),
                )

    def get_state(self) -> List[Dict[str, Any]]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT s.index_name, s.last_updated_at, s.docs_count,
                           s.last_run_at, s.last_run_duration_ms, s.last_error,
                           (SELECT COUNT(*) FROM search_index_update_queue q
                             WHERE q.type = s.index_name) AS queued,
                           (SELECT COUNT(*) FROM search_index_pending_deletion d
                             WHERE d.type = s.index_name) AS pending_deletions
                    FROM search_indexer_state s
                    ORDER BY s.index_name
                    """
                )
                return [dict(r) for r in cur.fetchall()]

    # ── Scheduling lock ─────────────────────────────────────

    @contextmanager
    def sync_lock(self, index_name: str):
        """
        Session advisory lock held for the duration of one pass.
        Yields False when another worker already holds it.
        """
        p = get_pool()
        conn = p.getconn()
        acquired = False
        try:
            conn.autocommit = True
            with conn.cursor() as cur:
                cur.execute("SELECT pg_try_advisory_lock(hashtext(%s))",
                            (f"search-sync:{index_name}",))
                acquired = bool(cur.fetchone()[0])
            yield acquired
        finally:
            try:
                if acquired:
                    with conn.cursor() as cur:
                        cur.execute("SELECT pg_advisory_unlock(hashtext(%s))",
                                    (f"search-sync:{index_name}",))
            finally:
                if not conn.closed:
                    conn.autocommit = False
                p.putconn(conn, close=bool(conn.closed))

    def ping(self) -> None:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
