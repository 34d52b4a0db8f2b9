"""
Content deletion across the primary store, the vector index and the blob store.

Permanent deletion runs as a saga with a persisted checkpoint:

    started -> vectors_deleted -> blob_deleted -> completed

Vectors go first so a failure there leaves the primary record intact and
the item can simply be retried (saga `aborted`). The blob phase is
non-critical. The primary phase removes the content and all of its
dependent rows in one transaction; if it fails after the vectors are gone
the saga is left `inconsistent`, logged with INCONSISTENT STATE, and picked
up by reconcile_stalled_sagas.

Soft deletion only flags the record and tags the blob; it is reversible
for SOFT_DELETE_RECOVERY_DAYS.
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from models.content_models import Content, utcnow
from models.deletion_models import (
    OPEN_SAGA_STATUSES,
    BulkDeleteResult,
    BulkDeleteSummary,
    ContentDeleteResult,
    DeleteOutcome,
    DeletePhase,
    DeletionSaga,
    SagaStatus,
)
from utils.exceptions import ConsistencyError, NotFoundError, StudyForgeError, ValidationError
from utils.settings import (
    BLOB_DELETE_RETRIES,
    CLEANUP_BATCH_SIZE,
    SAGA_MAX_RECONCILE_ATTEMPTS,
    SAGA_STALL_MINUTES,
    SOFT_DELETE_RECOVERY_DAYS,
    VECTOR_DELETE_RETRIES,
)

logger = logging.getLogger(__name__)


def vector_filter(content_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    filter_dict = {"content_id": {"$eq": content_id}}
    if user_id:
        filter_dict["user_id"] = {"$eq": user_id}
    return filter_dict


class DeletionService:
    def __init__(
        self,
        store,
        vector_store,
        blob_store,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        vector_retries: int = VECTOR_DELETE_RETRIES,
        blob_retries: int = BLOB_DELETE_RETRIES,
        recovery_days: int = SOFT_DELETE_RECOVERY_DAYS,
    ):
        self.store = store
        self.vector_store = vector_store
        self.blob_store = blob_store
        self._sleep = sleep
        self.vector_retries = vector_retries
        self.blob_retries = blob_retries
        self.recovery_days = recovery_days

    async def _with_retries(self, op: Callable[[], Awaitable[Any]], attempts: int, label: str) -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                return await op()
            except Exception as e:
                last_error = e
                if attempt < attempts - 1:
                    delay = 2 ** attempt
                    logger.warning(f"[delete] {label} failed (attempt {attempt + 1}/{attempts}), retrying in {delay}s: {e}")
                    await self._sleep(delay)
        raise last_error

    async def _checkpoint(self, saga: DeletionSaga, status: SagaStatus, error: Optional[str] = None) -> None:
        saga.status = status
        if error is not None:
            saga.last_error = error
        try:
            await self.store.save_saga(saga)
        except Exception as e:
            logger.warning(f"[delete] Could not checkpoint saga for {saga.content_id} at {status.value} (non-fatal): {e}")

    # ── Permanent deletion ────────────────────────────────────────────────

    async def permanently_delete_content(self, content_id: str, user_id: str) -> ContentDeleteResult:
        result = ContentDeleteResult(content_id=content_id)
        phases = result.phases

        content = await self.store.get_content(content_id)
        if content is None or content.user_id != user_id:
            phases[DeletePhase.VALIDATION].error = "Content not found"
            result.message = "Content not found"
            return result
        phases[DeletePhase.VALIDATION].success = True

        saga = DeletionSaga(content_id=content_id, user_id=user_id, blob_key=content.blob_key)
        saga = await self.store.save_saga(saga)

        # Phase 1: vectors
        try:
            await self._with_retries(
                lambda: self.vector_store.delete_by_metadata(vector_filter(content_id, user_id)),
                self.vector_retries,
                f"vector delete for {content_id}",
            )
            phases[DeletePhase.VECTOR].success = True
            logger.info(f"[delete] Phase 1: deleted vectors for content {content_id}")
        except Exception as e:
            phases[DeletePhase.VECTOR].error = str(e)
            result.message = f"Failed to delete vectors: {e}"
            await self._checkpoint(saga, SagaStatus.ABORTED, str(e))
            logger.error(f"[delete] Phase 1 FAILED for content {content_id}, primary record untouched: {e}")
            return result
        await self._checkpoint(saga, SagaStatus.VECTORS_DELETED)

        # Phase 2: blob (non-critical)
        await self._delete_blob(content, result)
        await self._checkpoint(saga, SagaStatus.BLOB_DELETED)

        # Phase 3: primary records, one transaction
        try:
            counts = await self.store.delete_content_cascade(content_id)
            phases[DeletePhase.PRIMARY].success = True
            phases[DeletePhase.PRIMARY].deleted_counts = counts
        except Exception as e:
            failure = ConsistencyError(content_id, f"vectors deleted, primary delete failed: {e}")
            phases[DeletePhase.PRIMARY].error = str(e)
            result.outcome = DeleteOutcome.INCONSISTENT
            result.message = failure.message
            await self._checkpoint(saga, SagaStatus.INCONSISTENT, str(e))
            logger.error(f"[delete] {failure.message}")
            return result

        await self._checkpoint(saga, SagaStatus.COMPLETED)
        result.success = True
        result.outcome = DeleteOutcome.SUCCEEDED
        result.message = "Content and all related data permanently deleted"
        logger.info(f"[delete] SUCCESS: content {content_id} permanently deleted: {counts}")
        return result

    async def _delete_blob(self, content: Content, result: ContentDeleteResult) -> None:
        phase = result.phases[DeletePhase.BLOB]
        if not content.blob_key:
            phase.success = True
            phase.deleted = False
            return
        try:
            await self._with_retries(
                lambda: self.blob_store.delete(content.blob_key),
                self.blob_retries,
                f"blob delete for {content.id}",
            )
            phase.success = True
            phase.deleted = True
            logger.info(f"[delete] Phase 2: deleted blob {content.blob_key}")
        except Exception as e:
            phase.error = str(e)
            logger.warning(f"[delete] Phase 2: failed to delete blob {content.blob_key} (non-critical): {e}")

    # ── Bulk ──────────────────────────────────────────────────────────────

    async def _bulk_item(self, content_id: str, user_id: str, permanent: bool) -> ContentDeleteResult:
        if permanent:
            return await self.permanently_delete_content(content_id, user_id)

        result = ContentDeleteResult(content_id=content_id)
        try:
            outcome = await self.soft_delete_content(content_id, user_id)
        except StudyForgeError as e:
            result.phases[DeletePhase.VALIDATION].error = e.message
            result.message = e.message
            return result
        result.phases[DeletePhase.VALIDATION].success = True
        result.phases[DeletePhase.PRIMARY].success = True
        result.success = True
        result.outcome = DeleteOutcome.SUCCEEDED
        result.message = outcome["message"]
        return result

    async def bulk_delete_contents(self, content_ids: List[str], user_id: str, permanent: bool = False) -> BulkDeleteResult:
        start = time.time()
        logger.info(f"[BulkDelete] Starting bulk delete for user {user_id}: {len(content_ids)} items, permanent={permanent}")

        settled = await asyncio.gather(
            *(self._bulk_item(cid, user_id, permanent) for cid in content_ids),
            return_exceptions=True,
        )

        results: List[ContentDeleteResult] = []
        for content_id, item in zip(content_ids, settled):
            if isinstance(item, BaseException):
                logger.error(f"[BulkDelete] Unexpected error for {content_id}: {item}")
                failed = ContentDeleteResult(content_id=content_id, message=f"Unexpected error: {item}")
                failed.phases[DeletePhase.VALIDATION].error = str(item)
                results.append(failed)
            else:
                results.append(item)

        def count(phase: DeletePhase, succeeded: bool) -> int:
            if succeeded:
                return sum(1 for r in results if r.phases[phase].success)
            return sum(1 for r in results if not r.phases[phase].success and r.phases[phase].error)

        summary = BulkDeleteSummary(
            vector_deleted_count=count(DeletePhase.VECTOR, True),
            vector_failed_count=count(DeletePhase.VECTOR, False),
            primary_deleted_count=count(DeletePhase.PRIMARY, True),
            primary_failed_count=count(DeletePhase.PRIMARY, False),
            blob_deleted_count=sum(1 for r in results if r.phases[DeletePhase.BLOB].deleted),
            blob_failed_count=count(DeletePhase.BLOB, False),
        )
        succeeded = sum(1 for r in results if r.outcome == DeleteOutcome.SUCCEEDED)
        inconsistent = [r.content_id for r in results if r.outcome == DeleteOutcome.INCONSISTENT]
        failed = sum(1 for r in results if r.outcome == DeleteOutcome.FAILED)
        elapsed_ms = int((time.time() - start) * 1000)

        logger.info(
            f"[BulkDelete] Completed for user {user_id}: {succeeded} succeeded, {failed} failed, "
            f"{len(inconsistent)} inconsistent. Vectors: {summary.vector_deleted_count}/{len(results)}, "
            f"primary: {summary.primary_deleted_count}/{len(results)}, blobs: {summary.blob_deleted_count}/{len(results)}. "
            f"Processing time: {elapsed_ms}ms"
        )
        if inconsistent:
            logger.error(
                f"[BulkDelete] WARNING: {len(inconsistent)} items in INCONSISTENT STATE (vectors deleted, primary failed). "
                f"Reconciliation pending for: {', '.join(inconsistent)}"
            )

        return BulkDeleteResult(
            success=succeeded > 0,
            total_requested=len(content_ids),
            total_succeeded=succeeded,
            total_failed=failed,
            total_inconsistent=len(inconsistent),
            results=results,
            summary=summary,
            processing_time_ms=elapsed_ms,
        )

    # ── Soft deletion ─────────────────────────────────────────────────────

    async def soft_delete_content(self, content_id: str, user_id: str) -> Dict[str, Any]:
        content = await self.store.get_content(content_id)
        if content is None or content.user_id != user_id or content.is_deleted:
            raise NotFoundError(f"Content {content_id} not found")

        content.is_deleted = True
        content.deleted_at = utcnow()
        await self.store.save_content(content)

        blob_marked = False
        if content.blob_key:
            try:
                await self.blob_store.tag_soft_deleted(content.blob_key, user_id)
                blob_marked = True
            except Exception as e:
                logger.warning(f"Failed to tag blob {content.blob_key} for soft deletion (non-fatal): {e}")

        logger.info(f"Content soft deleted: {content_id} by user {user_id}{' (blob tagged)' if blob_marked else ''}")
        return {
            "success": True,
            "message": f"Content deleted successfully. You can recover it within {self.recovery_days} days.",
            "blob_marked": blob_marked,
        }

    async def restore_content(self, content_id: str, user_id: str) -> Dict[str, Any]:
        content = await self.store.get_content(content_id)
        if content is None or content.user_id != user_id or not content.is_deleted:
            raise NotFoundError(f"Deleted content {content_id} not found")
        if content.deleted_at and utcnow() - content.deleted_at > timedelta(days=self.recovery_days):
            raise ValidationError(
                f"Content cannot be restored after {self.recovery_days} days",
                error_code="RECOVERY_WINDOW_EXPIRED",
            )

        blob_restored = False
        if content.blob_key:
            try:
                await self.blob_store.untag_soft_deleted(content.blob_key)
                blob_restored = True
            except Exception as e:
                logger.warning(f"Error removing soft-deletion tags from {content.blob_key} (non-fatal): {e}")

        content.is_deleted = False
        content.deleted_at = None
        await self.store.save_content(content)
        logger.info(f"Content restored: {content_id} by user {user_id}")
        return {"success": True, "message": "Content restored successfully", "blob_restored": blob_restored}

    async def list_deleted_contents(self, user_id: str) -> List[Dict[str, Any]]:
        now = utcnow()
        items = []
        for content in await self.store.list_deleted_contents(user_id):
            days_since = (now - content.deleted_at).days if content.deleted_at else 0
            days_left = max(0, self.recovery_days - days_since)
            items.append({
                "content": content.model_dump(mode="json", exclude={"stages"}),
                "recovery_info": {
                    "days_since_deletion": days_since,
                    "days_until_permanent_deletion": days_left,
                    "can_recover": days_left > 0,
                },
            })
        return items

    async def cleanup_expired_soft_deletes(self, limit: int = CLEANUP_BATCH_SIZE) -> int:
        cutoff = utcnow() - timedelta(days=self.recovery_days)
        expired = await self.store.list_soft_deleted_before(cutoff, limit)
        deleted = 0
        for content in expired:
            result = await self.permanently_delete_content(content.id, content.user_id)
            if result.success:
                deleted += 1
        logger.info(f"Cleanup completed: {deleted}/{len(expired)} expired contents permanently deleted")
        return deleted

    # ── Reconciliation ────────────────────────────────────────────────────

    async def reconcile_stalled_sagas(
        self,
        older_than_minutes: int = SAGA_STALL_MINUTES,
        max_attempts: int = SAGA_MAX_RECONCILE_ATTEMPTS,
        limit: int = CLEANUP_BATCH_SIZE,
    ) -> Dict[str, int]:
        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        sagas = await self.store.list_sagas(OPEN_SAGA_STATUSES, cutoff, limit)
        outcome = {"completed": 0, "aborted": 0, "manual": 0, "still_open": 0}

        for saga in sagas:
            if saga.status == SagaStatus.STARTED:
                # Vector phase never confirmed, primary never touched
                await self._checkpoint(saga, SagaStatus.ABORTED, saga.last_error or "stalled before vector phase")
                logger.info(f"[reconcile] Compensated saga for {saga.content_id}: aborted, primary record untouched")
                outcome["aborted"] += 1
                continue

            if saga.attempts >= max_attempts:
                failure = ConsistencyError(
                    saga.content_id,
                    f"gave up after {saga.attempts} attempts, manual intervention required ({saga.last_error})",
                )
                await self._checkpoint(saga, SagaStatus.MANUAL)
                logger.error(f"[reconcile] {failure.message}")
                outcome["manual"] += 1
                continue

            saga.attempts += 1
            if saga.blob_key and saga.status in (SagaStatus.VECTORS_DELETED, SagaStatus.INCONSISTENT):
                try:
                    await self.blob_store.delete(saga.blob_key)
                except Exception as e:
                    logger.warning(f"[reconcile] Blob delete retry failed for {saga.blob_key} (non-critical): {e}")

            try:
                counts = await self.store.delete_content_cascade(saga.content_id)
            except Exception as e:
                await self._checkpoint(saga, SagaStatus.INCONSISTENT, str(e))
                logger.error(
                    f"[reconcile] INCONSISTENT STATE for content {saga.content_id}: "
                    f"primary delete retry {saga.attempts}/{max_attempts} failed: {e}"
                )
                outcome["still_open"] += 1
                continue

            await self._checkpoint(saga, SagaStatus.COMPLETED)
            logger.info(f"[reconcile] Forward-completed deletion of {saga.content_id}: {counts}")
            outcome["completed"] += 1

        if sagas:
            logger.info(f"[reconcile] Processed {len(sagas)} stalled sagas: {outcome}")
        return outcome
