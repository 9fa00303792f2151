"""
Search Index Sync Worker
========================
Keeps the Meilisearch indexes (articles, images, models) consistent with
PostgreSQL.

Each entity type is synced independently: its own index, watermark,
dirty queue and deletion ledger. A failure in one type is logged and
never stops the others.

Usage:
    search-sync run [--entity articles] [--mode full-rebuild] [--parallel 3]
    search-sync serve
    search-sync queue-update articles 42 43
    search-sync queue-delete images 7
    search-sync status
"""

import argparse
import logging
import signal
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from search_sync import config
from search_sync.config import ConfigValidator
from search_sync.db_pool import close_pool
from search_sync.entities import ENTITY_TYPES, get_entity_type
from search_sync.errors import SearchSyncError
from search_sync.meili_client import MeiliClient
from search_sync.orchestrator import FULL_REBUILD, INCREMENTAL, MODES, SyncOrchestrator
from search_sync.store import SearchSyncStore
from search_sync.structured_logging import setup_logging

log = logging.getLogger("search-sync")

_shutdown = False


def _handle_signal(signum, _frame):
    global _shutdown
    log.info("Received signal %s – shutting down gracefully", signum)
    _shutdown = True


# ── Runner ──────────────────────────────────────────────────

def sync_entity(orchestrator: SyncOrchestrator, store, name: str, mode: str) -> Dict:
    """One pass for one entity type, guarded by its scheduling lock."""
    entity_type = get_entity_type(name)
    try:
        # acquiring the lock can fail too (pool exhausted, connection lost)
        with store.sync_lock(name) as acquired:
            if not acquired:
                log.warning("  %s: another pass holds the lock, skipping", name)
                return {"entity_type": name, "status": "skipped"}
            report = orchestrator.run(entity_type, mode)
    except SearchSyncError as e:
        log.error("  %s: %s failed in phase %s at offset %s: %s",
                  name, mode, e.phase, e.offset, e.message)
        return {"entity_type": name, "status": "failed", "error": str(e)}
    except Exception as e:
        log.exception("  %s: %s failed: %s", name, mode, e)
        return {"entity_type": name, "status": "failed", "error": str(e)}
    return {
        "entity_type": name,
        "status": "ok",
        "indexed": report.documents_indexed,
        "removed": report.documents_removed,
    }


def run_sync_cycle(orchestrator: SyncOrchestrator, store,
                   names: Optional[List[str]] = None, mode: str = INCREMENTAL,
                   parallel: int = 1) -> List[Dict]:
    """Run one pass per entity type; returns one result dict per type."""
    names = names or list(ENTITY_TYPES)
    log.info("Starting sync cycle (%s): %s", mode, ", ".join(names))
    total_start = time.time()

    if parallel > 1 and len(names) > 1:
        with ThreadPoolExecutor(max_workers=min(parallel, len(names))) as pool:
            results = list(pool.map(lambda n: sync_entity(orchestrator, store, n, mode), names))
    else:
        results = [sync_entity(orchestrator, store, n, mode) for n in names]

    indexed = sum(r.get("indexed", 0) for r in results)
    removed = sum(r.get("removed", 0) for r in results)
    failed = [r["entity_type"] for r in results if r["status"] == "failed"]
    log.info("Sync cycle complete: %d indexed, %d removed, %d failed in %.1fs",
             indexed, removed, len(failed), time.time() - total_start)
    return results


def wait_for_database(store, attempts: int = 30, delay: float = 5) -> bool:
    for attempt in range(attempts):
        try:
            store.ping()
            log.info("Database connection established")
            return True
        except Exception:
            log.info("Waiting for database... (%d/%d)", attempt + 1, attempts)
            time.sleep(delay)
    log.error("Could not connect to database after %d attempts", attempts)
    return False


def serve(orchestrator: SyncOrchestrator, store, names=None, parallel: int = 1) -> int:
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    log.info("Search sync worker starting (interval=%ds)", config.INDEX_INTERVAL)
    if not wait_for_database(store):
        return 1

    run_sync_cycle(orchestrator, store, names, INCREMENTAL, parallel)

    last_run = time.time()
    while not _shutdown:
        now = time.time()
        if now - last_run >= config.INDEX_INTERVAL:
            run_sync_cycle(orchestrator, store, names, INCREMENTAL, parallel)
            last_run = time.time()
        time.sleep(min(30, config.INDEX_INTERVAL))

    log.info("Search sync worker stopped")
    return 0


def print_status(store) -> None:
    rows = store.get_state()
    if not rows:
        print("No sync state recorded yet.")
        return
    print(f"{'index':<12} {'watermark':<33} {'docs':>8} {'queued':>7} {'deletes':>8}  last error")
    for r in rows:
        print(f"{r['index_name']:<12} {str(r['last_updated_at']):<33} "
              f"{r['docs_count']:>8} {r['queued']:>7} {r['pending_deletions']:>8}  "
              f"{r['last_error'] or ''}")


# ── CLI ─────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="search-sync",
                                     description="Search index sync worker")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Run one sync cycle and exit")
    run_p.add_argument("--entity", action="append", choices=sorted(ENTITY_TYPES),
                       help="Entity type to sync (repeatable; default: all)")
    run_p.add_argument("--mode", choices=MODES, default=INCREMENTAL)
    run_p.add_argument("--parallel", type=int, default=1,
                       help="Entity types synced concurrently")

    serve_p = sub.add_parser("serve", help="Sync periodically until stopped")
    serve_p.add_argument("--entity", action="append", choices=sorted(ENTITY_TYPES))
    serve_p.add_argument("--parallel", type=int, default=1)

    for cmd, help_text in (("queue-update", "Mark entities for reindex"),
                           ("queue-delete", "Mark entities for removal from the index")):
        p = sub.add_parser(cmd, help=help_text)
        p.add_argument("entity", choices=sorted(ENTITY_TYPES))
        p.add_argument("ids", nargs="+", type=int)

    sub.add_parser("status", help="Show per-index sync state")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(config.LOG_LEVEL, config.LOG_JSON, config.LOG_FILE)
    ConfigValidator.validate_and_exit_on_error(quiet=True)

    store = SearchSyncStore()
    try:
        if args.command == "queue-update":
            n = store.enqueue_update(args.entity, args.ids)
            log.info("Queued %d %s for reindex", n, args.entity)
            return 0
        if args.command == "queue-delete":
            n = store.enqueue_deletion(args.entity, args.ids)
            log.info("Queued %d %s for deletion", n, args.entity)
            return 0
        if args.command == "status":
            print_status(store)
            return 0

        # the client is built once and shared by every component
        orchestrator = SyncOrchestrator(store, MeiliClient())
        if args.command == "serve":
            return serve(orchestrator, store, args.entity, args.parallel)

        if args.mode == FULL_REBUILD:
            log.info("Full rebuild requested: building shadow indexes and swapping")
        results = run_sync_cycle(orchestrator, store, args.entity, args.mode, args.parallel)
        return 1 if any(r["status"] == "failed" for r in results) else 0
    finally:
        close_pool()


if __name__ == "__main__":
    sys.exit(main())
