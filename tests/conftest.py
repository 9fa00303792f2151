# tests/conftest.py
"""
In-memory stand-ins for the two collaborators of the sync engine.

FakeIndexService mimics the Meilisearch calls used by ``MeiliClient``:
mutations are applied immediately and return a TaskInfo whose status the
test can steer (``stuck_types`` keep tasks pending, ``failing_types`` make
them fail without applying anything).

FakeStore keeps entity rows, the dirty queue, the deletion ledger and the
watermark in dictionaries and evaluates the fetch filter in Python.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from search_sync.errors import TransientIndexError
from search_sync.meili_client import TaskInfo
from search_sync.reader import dedupe_ids
from search_sync.tasks import FixedBackoff, TaskWaiter

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Index service
# ---------------------------------------------------------------------------

class FakeIndexService:
    def __init__(self):
        self.indexes = {}
        self.tasks = {}
        self._next_uid = 1
        self.calls = []
        self.document_batches = []      # (index uid, [ids]) per update_documents call
        self.stuck_types = set()
        self.failing_types = set()
        self.fail_submit_on_call = None  # 1-based update_documents call that raises
        self.fail_submit_index = None    # only fail submissions to this index
        self.task_polls = 0

    # -- helpers ------------------------------------------------------------
    def _task(self, type_, index_uid, apply=None):
        uid = self._next_uid
        self._next_uid += 1
        if type_ in self.failing_types:
            status = "failed"
            error = {"message": f"{type_} rejected", "code": "invalid_document_fields"}
        elif type_ in self.stuck_types:
            status = "processing"
            error = None
        else:
            status = "succeeded"
            error = None
            if apply:
                apply()
        self.tasks[uid] = TaskInfo(task_uid=uid, status=status, index_uid=index_uid,
                                   type=type_, error=error)
        return TaskInfo(task_uid=uid, status="enqueued", index_uid=index_uid, type=type_)

    def _new_index(self, uid, primary_key):
        self.indexes[uid] = {
            "primaryKey": primary_key,
            "settings": {
                "searchableAttributes": ["*"],
                "sortableAttributes": [],
                "filterableAttributes": [],
            },
            "docs": {},
        }

    def docs(self, uid):
        return self.indexes[uid]["docs"] if uid in self.indexes else {}

    def seed(self, uid, docs, primary_key="id"):
        self._new_index(uid, primary_key)
        for d in docs:
            self.indexes[uid]["docs"][d[primary_key]] = dict(d)

    # -- index calls --------------------------------------------------------
    def get_index(self, uid):
        self.calls.append(("get_index", uid))
        if uid not in self.indexes:
            return None
        return {"uid": uid, "primaryKey": self.indexes[uid]["primaryKey"]}

    def create_index(self, uid, primary_key=None):
        self.calls.append(("create_index", uid))
        return self._task("indexCreation", uid, lambda: self._new_index(uid, primary_key))

    def update_index(self, uid, primary_key):
        self.calls.append(("update_index", uid))

        def apply():
            self.indexes[uid]["primaryKey"] = primary_key
        return self._task("indexUpdate", uid, apply)

    def delete_index(self, uid):
        self.calls.append(("delete_index", uid))
        return self._task("indexDeletion", uid, lambda: self.indexes.pop(uid, None))

    def swap_indexes(self, first, second):
        self.calls.append(("swap_indexes", first, second))

        def apply():
            self.indexes[first], self.indexes[second] = self.indexes[second], self.indexes[first]
        return self._task("indexSwap", None, apply)

    def get_settings(self, uid):
        self.calls.append(("get_settings", uid))
        return copy.deepcopy(self.indexes[uid]["settings"])

    def _settings_update(self, uid, key, attributes, keep_order):
        self.calls.append(("update_settings", uid, key))

        def apply():
            values = list(attributes) if keep_order else sorted(attributes)
            self.indexes[uid]["settings"][key] = values
        return self._task("settingsUpdate", uid, apply)

    def update_searchable_attributes(self, uid, attributes):
        return self._settings_update(uid, "searchableAttributes", attributes, True)

    def update_sortable_attributes(self, uid, attributes):
        return self._settings_update(uid, "sortableAttributes", attributes, False)

    def update_filterable_attributes(self, uid, attributes):
        return self._settings_update(uid, "filterableAttributes", attributes, False)

    # -- documents ----------------------------------------------------------
    def update_documents(self, uid, documents, primary_key=None):
        self.calls.append(("update_documents", uid, len(documents)))
        submissions = sum(1 for c in self.calls if c[0] == "update_documents"
                          and (self.fail_submit_index is None or c[1] == self.fail_submit_index))
        if (self.fail_submit_on_call is not None
                and (self.fail_submit_index is None or uid == self.fail_submit_index)
                and submissions == self.fail_submit_on_call):
            raise TransientIndexError("Meilisearch unreachable: PUT documents")
        self.document_batches.append((uid, [d["id"] for d in documents]))

        def apply():
            if uid not in self.indexes:
                self._new_index(uid, primary_key)
            for d in documents:
                self.indexes[uid]["docs"].setdefault(d["id"], {}).update(d)
        return self._task("documentAdditionOrUpdate", uid, apply)

    def delete_documents(self, uid, ids):
        self.calls.append(("delete_documents", uid, list(ids)))

        def apply():
            for i in ids:
                self.indexes[uid]["docs"].pop(i, None)
        return self._task("documentDeletion", uid, apply)

    def get_document(self, uid, document_id):
        return copy.deepcopy(self.docs(uid).get(document_id))

    # -- tasks --------------------------------------------------------------
    def get_tasks(self, task_uids):
        self.task_polls += 1
        return [copy.copy(self.tasks[u]) for u in task_uids if u in self.tasks]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class FakeStore:
    def __init__(self, now=T0):
        self.now = now
        self.rows = {}
        self.queue = []        # (id, type, created_at)
        self.deletions = []    # (id, type)
        self.watermarks = {}
        self.failures = {}
        self.fetch_calls = []
        self.locked = set()
        self.commits = 0
        self.docs_counts = {}

    def tick(self, seconds=1):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def add(self, entity, row):
        self.rows.setdefault(entity, {})[row["id"]] = row
        return row

    def fetch_entities(self, entity_type, fetch_filter, after_id, limit):
        self.fetch_calls.append((entity_type.name, after_id, limit))
        rows = [
            r for _, r in sorted(self.rows.get(entity_type.name, {}).items())
            if r.get("eligible", True)
            and fetch_filter.matches(r)
            and (after_id is None or r["id"] > after_id)
        ]
        return [copy.deepcopy(r) for r in rows[:limit]]

    def snapshot(self, index_name):
        ids = dedupe_ids(i for i, t, at in self.queue if t == index_name and at <= self.now)
        return self.now, ids

    def enqueue_update(self, index_name, ids):
        for i in ids:
            self.queue.append((i, index_name, self.now))
        return len(ids)

    def get_pending_deletions(self, index_name):
        return dedupe_ids(i for i, t in self.deletions if t == index_name)

    def delete_pending_deletions(self, index_name, ids):
        before = len(self.deletions)
        self.deletions = [(i, t) for i, t in self.deletions
                          if not (t == index_name and i in ids)]
        return before - len(self.deletions)

    def enqueue_deletion(self, index_name, ids):
        for i in ids:
            self.deletions.append((i, index_name))
        return len(ids)

    def get_watermark(self, index_name):
        return self.watermarks.get(index_name)

    def commit_watermark(self, index_name, watermark, dirty_ids, snapshot_at,
                         docs_count, duration_ms, replace_count=False):
        self.commits += 1
        previous = self.docs_counts.get(index_name, 0)
        self.docs_counts[index_name] = docs_count if replace_count else previous + docs_count
        current = self.watermarks.get(index_name)
        self.watermarks[index_name] = max(current, watermark) if current else watermark
        before = len(self.queue)
        self.queue = [(i, t, at) for i, t, at in self.queue
                      if not (t == index_name and i in dirty_ids and at <= snapshot_at)]
        self.failures.pop(index_name, None)
        return before - len(self.queue)

    def record_failure(self, index_name, error, duration_ms):
        self.failures[index_name] = error

    @contextmanager
    def sync_lock(self, index_name):
        if index_name in self.locked:
            yield False
            return
        self.locked.add(index_name)
        try:
            yield True
        finally:
            self.locked.discard(index_name)


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

def article_row(id, created_at=T0 - timedelta(days=1), updated_at=None, tags=("anime",),
                eligible=True, **overrides):
    row = {
        "id": id,
        "title": f"Article {id}",
        "content": f"Body of article {id}",
        "cover": f"cover-{id}.jpg",
        "nsfw": False,
        "user_id": 7,
        "published_at": created_at,
        "created_at": created_at,
        "updated_at": updated_at or created_at,
        "user": {"id": 7, "username": "alice", "image": None},
        "tags": [{"id": n, "name": name} for n, name in enumerate(tags)],
        "metrics": [{"article_id": id, "timeframe": "AllTime", "comment_count": 2,
                     "favorite_count": 3, "view_count": 40}],
        "eligible": eligible,
    }
    row.update(overrides)
    return row


@pytest.fixture
def index_service():
    return FakeIndexService()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def waiter(index_service, sleeps):
    return TaskWaiter(index_service, max_retries=3, backoff=FixedBackoff(0.01),
                      sleep=sleeps.append)
