"""
Meilisearch client used by the sync engine.

Wraps the ``meilisearch`` SDK: every mutating call returns a ``TaskInfo``
that the task waiter polls until it reaches a terminal state. SDK errors
are mapped onto the engine's taxonomy: connection problems, timeouts and
5xx responses are transient, any other error response is an
``IndexServiceError`` carrying the service's error code.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import meilisearch
from meilisearch.errors import (
    MeilisearchApiError,
    MeilisearchCommunicationError,
    MeilisearchTimeoutError,
)

from search_sync import config
from search_sync.errors import IndexServiceError, TransientIndexError

PENDING_STATUSES = {"enqueued", "processing"}
SUCCEEDED = "succeeded"
FAILED_STATUSES = {"failed", "canceled"}

# Task uid filters go into the query string
TASK_QUERY_CHUNK = 100


@dataclass
class TaskInfo:
    task_uid: int
    status: str = "enqueued"
    index_uid: Optional[str] = None
    type: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_sdk(cls, task) -> "TaskInfo":
        # enqueue responses carry task_uid, /tasks results carry uid
        uid = getattr(task, "task_uid", None)
        if uid is None:
            uid = task.uid
        return cls(
            task_uid=int(uid),
            status=getattr(task, "status", None) or "enqueued",
            index_uid=getattr(task, "index_uid", None),
            type=getattr(task, "type", None),
            error=getattr(task, "error", None),
            details=getattr(task, "details", None) or {},
        )

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES

    @property
    def is_succeeded(self) -> bool:
        return self.status == SUCCEEDED

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATUSES


class MeiliClient:
    def __init__(self, url: str = None, api_key: str = None, timeout: int = None,
                 client: Optional[meilisearch.Client] = None) -> None:
        self.url = url or config.MEILI_URL
        if client is None:
            api_key = api_key if api_key is not None else config.MEILI_MASTER_KEY
            client = meilisearch.Client(self.url, api_key or None,
                                        timeout=timeout or config.MEILI_TIMEOUT)
        self.client = client

    def _call(self, what: str, fn, *args, allow_404: bool = False, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (MeilisearchCommunicationError, MeilisearchTimeoutError) as e:
            raise TransientIndexError(f"Meilisearch unreachable: {what}: {e}") from e
        except MeilisearchApiError as e:
            if allow_404 and e.status_code == 404:
                return None
            message = getattr(e, "message", None) or str(e)
            if e.status_code >= 500:
                raise TransientIndexError(
                    f"Meilisearch {what} failed with {e.status_code}: {message}"
                ) from e
            raise IndexServiceError(
                f"Meilisearch {what} rejected: {message}",
                status_code=e.status_code,
                code=e.code,
            ) from e

    def _task(self, what: str, fn, *args, **kwargs) -> TaskInfo:
        return TaskInfo.from_sdk(self._call(what, fn, *args, **kwargs))

    # ---------------------------
    # Indexes
    # ---------------------------

    def get_index(self, uid: str) -> Optional[Dict[str, Any]]:
        """Index metadata (``uid``, ``primaryKey``, ...), or None when absent."""
        return self._call(f"get index {uid}", self.client.get_raw_index, uid, allow_404=True)

    def create_index(self, uid: str, primary_key: Optional[str] = None) -> TaskInfo:
        options = {"primaryKey": primary_key} if primary_key else None
        return self._task(f"create index {uid}", self.client.create_index, uid, options)

    def update_index(self, uid: str, primary_key: str) -> TaskInfo:
        return self._task(f"update index {uid}", self.client.index(uid).update,
                          primary_key=primary_key)

    def delete_index(self, uid: str) -> TaskInfo:
        return self._task(f"delete index {uid}", self.client.delete_index, uid)

    def swap_indexes(self, first: str, second: str) -> TaskInfo:
        return self._task(f"swap {first} <-> {second}", self.client.swap_indexes,
                          [{"indexes": [first, second]}])

    # ---------------------------
    # Settings
    # ---------------------------

    def get_settings(self, uid: str) -> Dict[str, Any]:
        return self._call(f"get settings {uid}", self.client.index(uid).get_settings) or {}

    def update_searchable_attributes(self, uid: str, attributes: Sequence[str]) -> TaskInfo:
        return self._task(f"update searchable attributes {uid}",
                          self.client.index(uid).update_searchable_attributes, list(attributes))

    def update_sortable_attributes(self, uid: str, attributes: Sequence[str]) -> TaskInfo:
        return self._task(f"update sortable attributes {uid}",
                          self.client.index(uid).update_sortable_attributes, list(attributes))

    def update_filterable_attributes(self, uid: str, attributes: Sequence[str]) -> TaskInfo:
        return self._task(f"update filterable attributes {uid}",
                          self.client.index(uid).update_filterable_attributes, list(attributes))

    # ---------------------------
    # Documents
    # ---------------------------

    def update_documents(self, uid: str, documents: List[Dict[str, Any]],
                         primary_key: Optional[str] = None) -> TaskInfo:
        """Add-or-update; existing documents are merged field by field."""
        return self._task(f"update documents {uid}",
                          self.client.index(uid).update_documents, documents, primary_key)

    def delete_documents(self, uid: str, ids: Sequence[Any]) -> TaskInfo:
        return self._task(f"delete documents {uid}",
                          self.client.index(uid).delete_documents, list(ids))

    # ---------------------------
    # Tasks
    # ---------------------------

    def get_tasks(self, task_uids: Sequence[int]) -> List[TaskInfo]:
        results: List[TaskInfo] = []
        uids = list(task_uids)
        for i in range(0, len(uids), TASK_QUERY_CHUNK):
            chunk = uids[i:i + TASK_QUERY_CHUNK]
            page = self._call("get tasks", self.client.get_tasks, {
                "uids": ",".join(str(u) for u in chunk),
                "limit": len(chunk),
            })
            results.extend(TaskInfo.from_sdk(t) for t in page.results)
        return results
