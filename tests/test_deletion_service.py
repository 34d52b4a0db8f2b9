import logging
from datetime import timedelta

import pytest

from models.content_models import utcnow
from models.deletion_models import DeleteOutcome, DeletePhase, DeletionSaga, SagaStatus
from models.study_models import Flashcard
from services.deletion_service import DeletionService
from utils.exceptions import NotFoundError, ValidationError


@pytest.fixture
def service(store, vector_store, blob_store, no_sleep):
    return DeletionService(store, vector_store, blob_store, sleep=no_sleep)


@pytest.fixture
def seeded(store, vector_store, blob_store, make_content, transcript_for):
    """Content with vectors, a blob, a transcript and a flashcard."""
    async def _seed(content_id, **fields):
        blob_key = f"uploads/{content_id}.pdf"
        await make_content(content_id, blob_key=blob_key, **fields)
        await store.save_transcript(transcript_for(content_id))
        await store.save_flashcard(Flashcard(content_id=content_id, user_id="user-1", front="ATP", back="Energy"))
        vector_store.vectors[content_id] = [{"text": "chunk", "user_id": "user-1"}]
        blob_store.blobs[blob_key] = {}
        return blob_key
    return _seed


def _sagas(store, content_id):
    return [s for s in store.sagas.values() if s.content_id == content_id]


async def test_permanent_delete_removes_everything(store, vector_store, blob_store, seeded, service):
    blob_key = await seeded("content-1")

    result = await service.permanently_delete_content("content-1", "user-1")

    assert result.success
    assert result.outcome == DeleteOutcome.SUCCEEDED
    assert result.phases[DeletePhase.BLOB].deleted is True
    assert result.phases[DeletePhase.PRIMARY].deleted_counts["flashcards"] == 1
    assert "content-1" not in store.contents
    assert "content-1" not in store.transcripts
    assert "content-1" not in vector_store.vectors
    assert blob_key not in blob_store.blobs
    assert vector_store.delete_calls[0] == {"content_id": {"$eq": "content-1"}, "user_id": {"$eq": "user-1"}}
    assert [s.status for s in _sagas(store, "content-1")] == [SagaStatus.COMPLETED]


async def test_permanent_delete_of_foreign_content_is_rejected(store, seeded, service):
    await seeded("content-1")

    result = await service.permanently_delete_content("content-1", "someone-else")

    assert not result.success
    assert result.message == "Content not found"
    assert "content-1" in store.contents
    assert store.sagas == {}


async def test_vector_failure_leaves_primary_intact(store, vector_store, seeded, service, no_sleep):
    await seeded("content-1")
    vector_store.delete_failures = 3

    result = await service.permanently_delete_content("content-1", "user-1")

    assert result.outcome == DeleteOutcome.FAILED
    assert result.message.startswith("Failed to delete vectors")
    assert "content-1" in store.contents
    assert store.cascade_calls == []
    assert [c.args[0] for c in no_sleep.await_args_list] == [1, 2]
    assert _sagas(store, "content-1")[0].status == SagaStatus.ABORTED


async def test_transient_vector_failure_is_retried(store, vector_store, seeded, service):
    await seeded("content-1")
    vector_store.delete_failures = 1

    result = await service.permanently_delete_content("content-1", "user-1")

    assert result.success
    assert len(vector_store.delete_calls) == 2


async def test_blob_failure_is_not_critical(store, blob_store, seeded, service):
    await seeded("content-1")
    blob_store.fail_delete = True

    result = await service.permanently_delete_content("content-1", "user-1")

    assert result.success
    assert result.phases[DeletePhase.BLOB].error == "blob store unavailable"
    assert "content-1" not in store.contents


async def test_primary_failure_is_inconsistent(store, vector_store, seeded, service, caplog):
    await seeded("content-1")
    store.fail_cascade_for.add("content-1")

    with caplog.at_level(logging.ERROR):
        result = await service.permanently_delete_content("content-1", "user-1")

    assert result.outcome == DeleteOutcome.INCONSISTENT
    assert result.message.startswith("INCONSISTENT STATE for content content-1: vectors deleted")
    assert result.phases[DeletePhase.PRIMARY].error == "primary store transaction aborted"
    assert "content-1" not in vector_store.vectors
    assert "content-1" in store.contents
    assert _sagas(store, "content-1")[0].status == SagaStatus.INCONSISTENT
    assert "INCONSISTENT STATE" in caplog.text


async def test_bulk_permanent_delete_reports_each_outcome(store, vector_store, seeded, service, caplog):
    for content_id in ("a", "b", "c"):
        await seeded(content_id)
    vector_store.fail_content_ids.add("b")
    store.fail_cascade_for.add("c")

    with caplog.at_level(logging.ERROR):
        result = await service.bulk_delete_contents(["a", "b", "c"], "user-1", permanent=True)

    assert result.success
    assert (result.total_succeeded, result.total_failed, result.total_inconsistent) == (1, 1, 1)
    assert [r.outcome for r in result.results] == [
        DeleteOutcome.SUCCEEDED,
        DeleteOutcome.FAILED,
        DeleteOutcome.INCONSISTENT,
    ]
    assert result.summary.vector_deleted_count == 2
    assert result.summary.vector_failed_count == 1
    assert result.summary.primary_deleted_count == 1
    assert result.summary.primary_failed_count == 1
    assert "b" in store.contents and "b" in vector_store.vectors
    assert "Reconciliation pending for: c" in caplog.text


async def test_bulk_soft_delete_reports_missing_items(store, seeded, service):
    await seeded("a")

    result = await service.bulk_delete_contents(["a", "missing"], "user-1")

    assert result.total_succeeded == 1
    assert result.total_failed == 1
    assert store.contents["a"].is_deleted


async def test_soft_delete_and_restore(store, blob_store, seeded, service):
    blob_key = await seeded("content-1")

    deleted = await service.soft_delete_content("content-1", "user-1")
    assert deleted["blob_marked"]
    assert blob_store.blobs[blob_key]["soft-deleted"] == "true"

    listed = await service.list_deleted_contents("user-1")
    assert listed[0]["recovery_info"] == {
        "days_since_deletion": 0,
        "days_until_permanent_deletion": 30,
        "can_recover": True,
    }
    with pytest.raises(NotFoundError):
        await service.soft_delete_content("content-1", "user-1")

    restored = await service.restore_content("content-1", "user-1")
    assert restored["blob_restored"]
    assert blob_store.blobs[blob_key] == {}
    assert not store.contents["content-1"].is_deleted


async def test_restore_after_recovery_window(store, seeded, service):
    await seeded("content-1", is_deleted=True, deleted_at=utcnow() - timedelta(days=31))

    with pytest.raises(ValidationError) as exc_info:
        await service.restore_content("content-1", "user-1")
    assert exc_info.value.error_code == "RECOVERY_WINDOW_EXPIRED"


async def test_cleanup_purges_only_expired_items(store, seeded, service):
    await seeded("old", is_deleted=True, deleted_at=utcnow() - timedelta(days=31))
    await seeded("recent", is_deleted=True, deleted_at=utcnow() - timedelta(days=10))

    assert await service.cleanup_expired_soft_deletes() == 1
    assert "old" not in store.contents
    assert "recent" in store.contents


def _stalled_saga(store, content_id, status, attempts=0, minutes_ago=60):
    saga = DeletionSaga(
        id=f"saga-{content_id}",
        content_id=content_id,
        user_id="user-1",
        status=status,
        attempts=attempts,
        updated_at=utcnow() - timedelta(minutes=minutes_ago),
    )
    store.sagas[saga.id] = saga
    return saga


async def test_reconcile_forward_completes_or_compensates(store, seeded, service, caplog):
    for content_id in ("inconsistent", "started", "exhausted", "fresh"):
        await seeded(content_id)
    _stalled_saga(store, "inconsistent", SagaStatus.INCONSISTENT, attempts=1)
    _stalled_saga(store, "started", SagaStatus.STARTED)
    _stalled_saga(store, "exhausted", SagaStatus.INCONSISTENT, attempts=5)
    _stalled_saga(store, "fresh", SagaStatus.VECTORS_DELETED, minutes_ago=1)

    with caplog.at_level(logging.ERROR):
        outcome = await service.reconcile_stalled_sagas(older_than_minutes=15)

    assert outcome == {"completed": 1, "aborted": 1, "manual": 1, "still_open": 0}
    assert store.sagas["saga-inconsistent"].status == SagaStatus.COMPLETED
    assert store.sagas["saga-inconsistent"].attempts == 2
    assert "inconsistent" not in store.contents
    assert store.sagas["saga-started"].status == SagaStatus.ABORTED
    assert "started" in store.contents
    assert store.sagas["saga-exhausted"].status == SagaStatus.MANUAL
    assert "exhausted" in store.contents
    assert store.sagas["saga-fresh"].status == SagaStatus.VECTORS_DELETED
    assert "manual intervention required" in caplog.text


async def test_reconcile_keeps_saga_open_when_primary_still_fails(store, seeded, service):
    await seeded("stuck")
    _stalled_saga(store, "stuck", SagaStatus.BLOB_DELETED)
    store.fail_cascade_for.add("stuck")

    outcome = await service.reconcile_stalled_sagas()

    assert outcome["still_open"] == 1
    assert store.sagas["saga-stuck"].status == SagaStatus.INCONSISTENT
    assert store.sagas["saga-stuck"].attempts == 1
