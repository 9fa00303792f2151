"""
Per-entity-type sync pass.

    SETUP → CLEANUP → SYNC_LOOP → (SWAP) → COMMIT_WATERMARK → DONE
                         any state → FAILED

The pass starts by capturing one consistency point from the database:
``snapshot_at`` (database clock) and the dirty-queue ids enqueued at or
before it. ``snapshot_at`` becomes the next watermark and only those
queue rows are deleted on commit, so anything enqueued or updated later
is picked up by the next pass. A failed pass leaves the watermark and the
queue untouched; re-running it retries the same window.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from search_sync import config
from search_sync.cleanup import CleanupCoordinator
from search_sync.errors import SearchSyncError
from search_sync.lifecycle import IndexLifecycleManager
from search_sync.reader import BatchReader, FetchFilter
from search_sync.structured_logging import ContextLogger
from search_sync.tasks import TaskWaiter
from search_sync.transform import transform_many
from search_sync.writer import DocumentWriter

INCREMENTAL = "incremental"
FULL_REBUILD = "full-rebuild"
MODES = (INCREMENTAL, FULL_REBUILD)

SETUP = "setup"
CLEANUP = "cleanup"
SYNC_LOOP = "sync"
SWAP = "swap"
COMMIT_WATERMARK = "commit"
DONE = "done"
FAILED = "failed"


@dataclass
class SyncReport:
    entity_type: str
    mode: str
    state: str = SETUP
    index_name: Optional[str] = None
    documents_indexed: int = 0
    documents_removed: int = 0
    dirty_consumed: int = 0
    batches: int = 0
    task_uids: List[int] = field(default_factory=list)
    duration_ms: int = 0
    error: Optional[str] = None


class SyncOrchestrator:
    def __init__(self, store, client, waiter: TaskWaiter = None,
                 read_batch_size: int = None, document_batch_size: int = None):
        self.store = store
        self.client = client
        self.waiter = waiter or TaskWaiter(client)
        self.lifecycle = IndexLifecycleManager(client, self.waiter)
        self.cleanup = CleanupCoordinator(store, client, self.waiter)
        self.read_batch_size = read_batch_size or config.READ_BATCH_SIZE
        self.document_batch_size = document_batch_size or config.MEILISEARCH_DOCUMENT_BATCH_SIZE

    def run(self, entity_type, mode: str = INCREMENTAL) -> SyncReport:
        if mode not in MODES:
            raise ValueError(f"Unknown sync mode {mode!r}")

        rebuild = mode == FULL_REBUILD
        target = entity_type.shadow_name if rebuild else entity_type.name
        report = SyncReport(entity_type=entity_type.name, mode=mode, index_name=target)
        log = ContextLogger(logging.getLogger("search-sync.orchestrator"),
                            entity_type=entity_type.name, mode=mode, index=target)
        start = time.time()
        offset = 0

        try:
            # ── SETUP ───────────────────────────────────────
            report.state = SETUP
            log.set_context(phase=SETUP)
            snapshot_at, dirty_ids = self.store.snapshot(entity_type.name)
            watermark = None if rebuild else self.store.get_watermark(entity_type.name)
            log.info("Starting %s pass (watermark=%s, queued=%d)",
                     mode, watermark.isoformat() if watermark else None, len(dirty_ids))
            if rebuild:
                self.lifecycle.prepare_shadow(target, entity_type.primary_key, entity_type.settings)
            else:
                self.lifecycle.setup(target, entity_type.primary_key, entity_type.settings)

            # ── CLEANUP ─────────────────────────────────────
            report.state = CLEANUP
            log.set_context(phase=CLEANUP)
            report.documents_removed = self.cleanup.cleanup_deleted(entity_type)

            # ── SYNC_LOOP ───────────────────────────────────
            report.state = SYNC_LOOP
            log.set_context(phase=SYNC_LOOP)
            fetch_filter = FetchFilter.build(watermark, dirty_ids)
            reader = BatchReader(self.store, entity_type, self.read_batch_size)
            writer = DocumentWriter(self.client, target, entity_type.primary_key,
                                    self.document_batch_size)
            for page_offset, rows in reader.pages(fetch_filter):
                offset = page_offset
                log.set_context(offset=offset)
                documents = transform_many(entity_type, rows)
                tasks = writer.submit(documents)
                uids = [t.task_uid for t in tasks]
                self.waiter.wait(uids, batch_ids=writer.batch_ids)
                report.task_uids.extend(uids)
                report.batches += len(tasks)
                report.documents_indexed += len(documents)
                offset = page_offset + len(rows)
                log.info("Indexed rows %d-%d", page_offset, offset - 1)

            # ── SWAP ────────────────────────────────────────
            if rebuild:
                report.state = SWAP
                log.set_context(phase=SWAP)
                self.lifecycle.swap(entity_type.name, target, entity_type.primary_key)
                report.index_name = entity_type.name

            # ── COMMIT_WATERMARK ────────────────────────────
            report.state = COMMIT_WATERMARK
            log.set_context(phase=COMMIT_WATERMARK)
            report.duration_ms = int((time.time() - start) * 1000)
            report.dirty_consumed = self.store.commit_watermark(
                entity_type.name, snapshot_at, dirty_ids, snapshot_at,
                report.documents_indexed, report.duration_ms,
                replace_count=rebuild,
            )
        except Exception as e:
            phase = report.state
            report.state = FAILED
            report.duration_ms = int((time.time() - start) * 1000)
            if isinstance(e, SearchSyncError):
                e.annotate(entity_type.name, phase, offset)
            report.error = str(e)
            log.error("Pass failed in %s at offset %d: %s", phase, offset, e)
            try:
                self.store.record_failure(entity_type.name, report.error, report.duration_ms)
            except Exception as record_err:
                log.warning("Could not record failure state: %s", record_err)
            raise

        report.state = DONE
        log.set_context(phase=DONE)
        log.info("Pass complete: %d indexed, %d removed, %d queued consumed in %dms",
                 report.documents_indexed, report.documents_removed,
                 report.dirty_consumed, report.duration_ms,
                 extra={"documents": report.documents_indexed,
                        "duration_ms": report.duration_ms})
        return report
