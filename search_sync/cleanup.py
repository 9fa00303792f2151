"""
Cleanup coordinator: removes ledgered entities from the index.

The pending-deletion ledger is keyed by the logical index name (e.g.
``articles``), never the physical shadow name, so entries recorded during
a rebuild still apply after the swap. Ledger rows are removed only after
the delete tasks succeeded: a crash in between just repeats the delete.
"""

import logging

from search_sync import config
from search_sync.writer import chunked

log = logging.getLogger("search-sync.cleanup")


class CleanupCoordinator:
    def __init__(self, store, client, waiter, batch_size: int = None):
        self.store = store
        self.client = client
        self.waiter = waiter
        self.batch_size = batch_size or config.DELETE_BATCH_SIZE

    def cleanup_deleted(self, entity_type) -> int:
        """Delete ledgered ids from the logical index; returns how many."""
        index_name = entity_type.name
        ids = list(self.store.get_pending_deletions(index_name))
        if not ids:
            return 0

        if self.client.get_index(index_name) is None:
            # nothing was ever indexed under this name
            log.info("%s: index absent, dropping %d ledger entries", index_name, len(ids))
        else:
            tasks = [self.client.delete_documents(index_name, batch)
                     for batch in chunked(ids, self.batch_size)]
            self.waiter.wait([t.task_uid for t in tasks])

        self.store.delete_pending_deletions(index_name, ids)
        log.info("%s: removed %d documents pending deletion", index_name, len(ids))
        return len(ids)
