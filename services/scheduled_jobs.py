"""
Periodic background jobs, run as asyncio loops inside the app lifespan.

- auto-resume of quota-paused content (hourly)
- quota-paused content count (every 15 minutes)
- expired soft-delete cleanup (daily)
- stalled deletion saga reconciliation (every 15 minutes)
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List

from models.content_models import Content, ContentStatus, QuotaPauseInfo, utcnow
from services.pipeline import QUOTA_PAUSE_REASON
from utils.exceptions import QuotaExceededError
from utils.settings import (
    AUTO_RESUME_INTERVAL,
    CLEANUP_BATCH_SIZE,
    CLEANUP_INTERVAL,
    QUOTA_CHECK_INTERVAL,
    RECONCILE_INTERVAL,
)

logger = logging.getLogger(__name__)

RECOVERY_EXTENSION = timedelta(hours=1)


class ScheduledJobs:
    def __init__(
        self,
        store,
        pipeline,
        quota_service,
        deletion_service,
        batch_size: int = CLEANUP_BATCH_SIZE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.pipeline = pipeline
        self.quota_service = quota_service
        self.deletion_service = deletion_service
        self.batch_size = batch_size
        self._sleep = sleep
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        logger.info("Starting scheduled jobs...")
        schedule = [
            ("auto-resume", AUTO_RESUME_INTERVAL, self.auto_resume_paused_content),
            ("quota-check", QUOTA_CHECK_INTERVAL, self.check_quota_paused_content),
            ("soft-delete-cleanup", CLEANUP_INTERVAL, self.cleanup_expired_content),
            ("saga-reconcile", RECONCILE_INTERVAL, self.reconcile_deletions),
        ]
        loop = asyncio.get_running_loop()
        for name, interval, job in schedule:
            self._tasks.append(loop.create_task(self._run_every(name, interval, job), name=f"job:{name}"))
        logger.info(f"Started {len(self._tasks)} scheduled jobs")

    async def stop(self) -> None:
        logger.info("Stopping scheduled jobs...")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _run_every(self, name: str, interval: int, job: Callable[[], Awaitable[object]]) -> None:
        while True:
            await self._sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in scheduled job {name}: {e}")

    # ── Jobs ──────────────────────────────────────────────────────────────

    @staticmethod
    def _recovery_due(content: Content, now) -> bool:
        info = content.metadata.quota_info
        recovery = info.estimated_recovery_time if info else None
        return recovery is None or recovery <= now

    async def _extend_recovery(self, content: Content) -> None:
        new_time = utcnow() + RECOVERY_EXTENSION
        if content.metadata.quota_info is None:
            content.metadata.quota_info = QuotaPauseInfo()
        content.metadata.quota_info.estimated_recovery_time = new_time
        await self.store.save_content(content)
        logger.info(f"Extended recovery time for content {content.id} to {new_time.isoformat()}")

    async def auto_resume_paused_content(self) -> Dict[str, int]:
        logger.info("Running auto-resume job for paused content...")
        paused = await self.store.list_paused_contents(QUOTA_PAUSE_REASON, self.batch_size)
        counts = {"resumed": 0, "skipped": 0, "extended": 0, "failed": 0}
        if not paused:
            logger.info("No paused content found for auto-resume")
            return counts

        logger.info(f"Found {len(paused)} paused content(s) to check")
        now = utcnow()
        for content in paused:
            if not self._recovery_due(content, now):
                recovery = content.metadata.quota_info.estimated_recovery_time
                minutes = int((recovery - now).total_seconds() // 60) + 1
                logger.debug(f"Content {content.id} still waiting for quota recovery ({minutes} minutes)")
                counts["skipped"] += 1
                continue

            gate = await self.quota_service.can_make_request()
            if not gate["can_proceed"]:
                logger.info(f"Quota still exhausted for content {content.id}: {gate.get('reason')}")
                await self._extend_recovery(content)
                counts["extended"] += 1
                continue

            try:
                logger.info(f"Auto-resuming content {content.id}")
                result = await self.pipeline.resume(content.id)
            except QuotaExceededError as e:
                logger.warning(f"Auto-resume of {content.id} hit quota again: {e.message}")
                await self._extend_recovery(content)
                counts["extended"] += 1
                continue
            except Exception as e:
                logger.error(f"Failed to auto-resume content {content.id}: {e}")
                counts["failed"] += 1
                continue

            if result.status == ContentStatus.PAUSED:
                # A fresh estimate from the new pause (e.g. a daily reset) stands
                if self._recovery_due(result, utcnow()):
                    await self._extend_recovery(result)
                counts["extended"] += 1
            else:
                counts["resumed"] += 1

        logger.info(
            f"Auto-resume job completed: {counts['resumed']} resumed, {counts['skipped']} skipped, "
            f"{counts['extended']} extended, {counts['failed']} failed"
        )
        return counts

    async def check_quota_paused_content(self) -> int:
        paused = await self.store.list_paused_contents(QUOTA_PAUSE_REASON, self.batch_size)
        if paused:
            logger.info(f"Currently {len(paused)} content(s) paused due to quota limits")
        return len(paused)

    async def cleanup_expired_content(self) -> int:
        logger.info("Running cleanup job for expired soft-deleted content...")
        return await self.deletion_service.cleanup_expired_soft_deletes(self.batch_size)

    async def reconcile_deletions(self) -> Dict[str, int]:
        return await self.deletion_service.reconcile_stalled_sagas()
