from datetime import timedelta

import pytest

from search_sync.entities import ARTICLES
from search_sync.errors import (
    DocumentSubmissionError,
    DocumentShapeError,
    TaskWaitTimeoutError,
)
from search_sync.orchestrator import DONE, FULL_REBUILD, INCREMENTAL, SyncOrchestrator

from conftest import T0, article_row


@pytest.fixture
def orchestrator(store, index_service, waiter):
    return SyncOrchestrator(store, index_service, waiter,
                            read_batch_size=4, document_batch_size=2)


def _submitted_ids(index_service, index="articles"):
    return [i for uid, ids in index_service.document_batches if uid == index for i in ids]


def test_first_pass_indexes_everything_and_commits_snapshot(orchestrator, store, index_service):
    for i in range(1, 11):
        store.add("articles", article_row(i))
    store.add("articles", article_row(11, eligible=False))

    report = orchestrator.run(ARTICLES, INCREMENTAL)

    assert report.state == DONE
    assert report.documents_indexed == 10
    assert sorted(index_service.docs("articles")) == list(range(1, 11))
    assert store.watermarks["articles"] == T0
    settings = index_service.indexes["articles"]["settings"]
    assert settings["searchableAttributes"] == ARTICLES.settings.searchable


def test_second_pass_without_changes_submits_nothing(orchestrator, store, index_service):
    for i in range(1, 6):
        store.add("articles", article_row(i))
    orchestrator.run(ARTICLES, INCREMENTAL)
    store.tick(60)
    index_service.document_batches.clear()

    report = orchestrator.run(ARTICLES, INCREMENTAL)

    assert report.documents_indexed == 0
    assert index_service.document_batches == []
    assert store.watermarks["articles"] == T0 + timedelta(seconds=60)


def test_row_updated_after_watermark_is_submitted_exactly_once(orchestrator, store, index_service):
    store.watermarks["articles"] = T0
    store.add("articles", article_row(41, updated_at=T0))
    store.add("articles", article_row(42, updated_at=T0 + timedelta(seconds=1)))
    store.add("articles", article_row(43, created_at=T0 + timedelta(seconds=5)))
    store.tick(10)

    orchestrator.run(ARTICLES, INCREMENTAL)

    submitted = _submitted_ids(index_service)
    assert submitted.count(42) == 1
    assert submitted.count(43) == 1
    assert 41 not in submitted


def test_dirty_queue_rows_are_indexed_and_consumed(orchestrator, store, index_service):
    store.watermarks["articles"] = T0
    store.add("articles", article_row(7, updated_at=T0 - timedelta(days=3)))
    store.add("articles", article_row(8, updated_at=T0 - timedelta(days=3), eligible=False))
    store.tick(10)
    store.enqueue_update("articles", [7, 7, 8])
    store.enqueue_update("images", [7])

    orchestrator.run(ARTICLES, INCREMENTAL)

    assert _submitted_ids(index_service) == [7]
    assert store.queue == [(7, "images", T0 + timedelta(seconds=10))]


def test_rows_enqueued_after_snapshot_wait_for_next_pass(orchestrator, store, index_service):
    store.watermarks["articles"] = T0
    store.add("articles", article_row(7, updated_at=T0 - timedelta(days=3)))
    store.tick(10)
    # enqueued with a timestamp later than the pass's snapshot point
    store.queue.append((7, "articles", T0 + timedelta(seconds=11)))

    orchestrator.run(ARTICLES, INCREMENTAL)

    assert _submitted_ids(index_service) == []
    assert store.queue == [(7, "articles", T0 + timedelta(seconds=11))]


def test_cleanup_runs_before_sync(orchestrator, store, index_service):
    index_service.seed("articles", [{"id": 5}])
    store.enqueue_deletion("articles", [5])

    report = orchestrator.run(ARTICLES, INCREMENTAL)

    assert report.documents_removed == 1
    assert index_service.get_document("articles", 5) is None
    assert store.deletions == []


def test_wait_timeout_leaves_watermark_and_queue(orchestrator, store, index_service):
    store.watermarks["articles"] = T0
    store.add("articles", article_row(1, updated_at=T0 + timedelta(seconds=1)))
    store.tick(10)
    store.enqueue_update("articles", [1])
    queue_before = list(store.queue)
    index_service.stuck_types.add("documentAdditionOrUpdate")

    with pytest.raises(TaskWaitTimeoutError) as exc:
        orchestrator.run(ARTICLES, INCREMENTAL)

    assert store.watermarks["articles"] == T0
    assert store.queue == queue_before
    assert store.commits == 0
    assert exc.value.entity_type == "articles"
    assert exc.value.phase == "sync"
    assert exc.value.offset == 0
    assert "articles" in store.failures


def test_failure_reports_progress_offset(orchestrator, store, index_service):
    for i in range(1, 10):
        store.add("articles", article_row(i))
    # pages of 4 rows → 2 submissions per page; the third submission is page 2
    index_service.fail_submit_on_call = 3

    with pytest.raises(DocumentSubmissionError) as exc:
        orchestrator.run(ARTICLES, INCREMENTAL)

    assert exc.value.offset == 4
    assert exc.value.phase == "sync"
    assert "articles" not in store.watermarks


def test_shape_drift_fails_before_submission(orchestrator, store, index_service):
    store.add("articles", article_row(1, user={"id": "not-an-int"}))
    with pytest.raises(DocumentShapeError) as exc:
        orchestrator.run(ARTICLES, INCREMENTAL)
    assert exc.value.field == "user.id"
    assert index_service.document_batches == []
    assert store.commits == 0


def test_full_rebuild_swaps_complete_index(orchestrator, store, index_service):
    index_service.seed("articles", [{"id": 1, "title": "stale"}, {"id": 99, "title": "gone"}])
    store.watermarks["articles"] = T0
    for i in range(1, 6):
        store.add("articles", article_row(i))
    store.tick(30)

    report = orchestrator.run(ARTICLES, FULL_REBUILD)

    # the watermark is ignored: every eligible row went into the shadow index
    assert sorted(index_service.docs("articles")) == [1, 2, 3, 4, 5]
    assert index_service.docs("articles")[1]["title"] == "Article 1"
    assert "articles_NEW" not in index_service.indexes
    assert set(_submitted_ids(index_service, "articles_NEW")) == {1, 2, 3, 4, 5}
    assert report.index_name == "articles"
    assert store.watermarks["articles"] == T0 + timedelta(seconds=30)


def test_failed_rebuild_leaves_live_index_identical(orchestrator, store, index_service):
    live = [{"id": 1, "title": "live one"}, {"id": 2, "title": "live two"}]
    index_service.seed("articles", live)
    index_service.indexes["articles"]["settings"]["filterableAttributes"] = ["tags"]
    before = {k: dict(v) for k, v in index_service.docs("articles").items()}
    for i in range(1, 9):
        store.add("articles", article_row(i))
    index_service.fail_submit_on_call = 3
    index_service.fail_submit_index = "articles_NEW"

    with pytest.raises(DocumentSubmissionError):
        orchestrator.run(ARTICLES, FULL_REBUILD)

    assert index_service.docs("articles") == before
    assert not [c for c in index_service.calls if c[0] == "swap_indexes"]
    assert "articles" not in store.watermarks


def test_rebuild_after_failed_rebuild_starts_from_clean_shadow(orchestrator, store, index_service):
    index_service.seed("articles_NEW", [{"id": 500, "title": "leftover"}])
    store.add("articles", article_row(1))

    orchestrator.run(ARTICLES, FULL_REBUILD)

    assert sorted(index_service.docs("articles")) == [1]


def test_unknown_mode_is_rejected(orchestrator):
    with pytest.raises(ValueError):
        orchestrator.run(ARTICLES, "sideways")


def test_waits_only_carry_the_current_page_ids(orchestrator, store, waiter):
    for i in range(1, 11):
        store.add("articles", article_row(i))
    held = []
    real_wait = waiter.wait

    def recording_wait(task_uids, *args, **kwargs):
        batch_ids = kwargs.get("batch_ids") or {}
        held.append(sum(len(ids) for ids in batch_ids.values()))
        return real_wait(task_uids, *args, **kwargs)
    waiter.wait = recording_wait

    orchestrator.run(ARTICLES, INCREMENTAL)

    # pages of 4, 4 and 2 rows; setup waits carry no ids
    assert [n for n in held if n] == [4, 4, 2]


def test_full_rebuild_replaces_document_count(orchestrator, store):
    for i in range(1, 6):
        store.add("articles", article_row(i))
    orchestrator.run(ARTICLES, INCREMENTAL)
    store.tick(10)
    store.add("articles", article_row(6, created_at=T0 + timedelta(seconds=5)))
    orchestrator.run(ARTICLES, INCREMENTAL)
    assert store.docs_counts["articles"] == 6

    store.tick(10)
    orchestrator.run(ARTICLES, FULL_REBUILD)

    assert store.docs_counts["articles"] == 6
