"""Document writer: upserts documents in fixed-size sub-batches."""

import logging
from typing import Any, Dict, List, Sequence

from search_sync import config
from search_sync.errors import DocumentSubmissionError, TransientIndexError

log = logging.getLogger("search-sync.writer")


def chunked(items: Sequence[Any], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class DocumentWriter:
    def __init__(self, client, index_name: str, primary_key: str = "id",
                 batch_size: int = None):
        self.client = client
        self.index_name = index_name
        self.primary_key = primary_key
        self.batch_size = batch_size or config.MEILISEARCH_DOCUMENT_BATCH_SIZE
        # task uid → document ids of the last submit() call, for failure reports
        self.batch_ids: Dict[int, List[Any]] = {}

    def submit(self, documents: Sequence[Dict[str, Any]]) -> List:
        """
        Submit all documents, one upsert per sub-batch.

        ``batch_ids`` is reset on every call so it only ever covers one
        page. An unreachable service aborts the call with
        ``DocumentSubmissionError`` carrying the tasks already enqueued;
        a rejected payload propagates as ``IndexServiceError``.
        """
        self.batch_ids = {}
        tasks = []
        for batch in chunked(list(documents), self.batch_size):
            ids = [d[self.primary_key] for d in batch]
            try:
                task = self.client.update_documents(self.index_name, batch, self.primary_key)
            except TransientIndexError as e:
                raise DocumentSubmissionError(
                    f"{self.index_name}: submitting {len(batch)} documents failed "
                    f"after {len(tasks)} batches: {e.message}",
                    tasks=tasks, batch_ids=ids,
                ) from e
            self.batch_ids[task.task_uid] = ids
            tasks.append(task)

        if tasks:
            log.debug("%s: %d documents submitted in %d batches",
                      self.index_name, len(documents), len(tasks))
        return tasks
