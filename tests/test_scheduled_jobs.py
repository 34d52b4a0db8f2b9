from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from models.content_models import ContentMetadata, ContentStatus, QuotaPauseInfo, utcnow
from services.pipeline import QUOTA_PAUSE_REASON
from services.scheduled_jobs import ScheduledJobs
from utils.exceptions import QuotaExceededError
from utils.quota import parse_quota_error

DAILY_ERROR = '429 RESOURCE_EXHAUSTED {"error": {"details": [{"quotaMetric": "generate_requests_per_day"}]}}'


@pytest.fixture
def quota_service():
    mock = AsyncMock()
    mock.can_make_request.return_value = {"can_proceed": True, "provider": "anthropic"}
    return mock


@pytest.fixture
def pipeline(store):
    async def resume(content_id, from_stage=None):
        content = await store.get_content(content_id)
        content.status = ContentStatus.COMPLETED
        content.metadata = ContentMetadata()
        await store.save_content(content)
        return content

    mock = AsyncMock()
    mock.resume.side_effect = resume
    return mock


@pytest.fixture
def jobs(store, pipeline, quota_service):
    return ScheduledJobs(store, pipeline, quota_service, deletion_service=AsyncMock())


@pytest.fixture
def paused_content(make_content):
    async def _paused(content_id, recovery_in):
        return await make_content(
            content_id,
            status=ContentStatus.PAUSED,
            metadata=ContentMetadata(
                paused_reason=QUOTA_PAUSE_REASON,
                paused_at=utcnow(),
                quota_info=QuotaPauseInfo(estimated_recovery_time=utcnow() + recovery_in),
            ),
        )
    return _paused


async def test_auto_resume_only_touches_recovered_items(store, jobs, pipeline, paused_content):
    await paused_content("ready", timedelta(minutes=-5))
    await paused_content("waiting", timedelta(hours=3))

    counts = await jobs.auto_resume_paused_content()

    assert counts == {"resumed": 1, "skipped": 1, "extended": 0, "failed": 0}
    pipeline.resume.assert_awaited_once_with("ready")
    assert store.contents["ready"].status == ContentStatus.COMPLETED
    assert store.contents["waiting"].status == ContentStatus.PAUSED


async def test_auto_resume_extends_when_quota_still_exhausted(store, jobs, pipeline, quota_service, paused_content):
    await paused_content("ready", timedelta(minutes=-5))
    quota_service.can_make_request.return_value = {"can_proceed": False, "reason": "anthropic: 1000/1000"}

    counts = await jobs.auto_resume_paused_content()

    assert counts["extended"] == 1
    pipeline.resume.assert_not_awaited()
    recovery = store.contents["ready"].metadata.quota_info.estimated_recovery_time
    assert recovery > utcnow() + timedelta(minutes=55)


async def test_auto_resume_extends_when_resume_hits_quota(store, jobs, pipeline, paused_content):
    await paused_content("ready", timedelta(minutes=-5))
    pipeline.resume.side_effect = QuotaExceededError(parse_quota_error(DAILY_ERROR))

    counts = await jobs.auto_resume_paused_content()

    assert counts["extended"] == 1
    assert store.contents["ready"].metadata.quota_info.estimated_recovery_time > utcnow()


async def test_auto_resume_keeps_estimate_from_new_pause(store, jobs, pipeline, paused_content):
    await paused_content("ready", timedelta(minutes=-5))
    daily_reset = utcnow() + timedelta(hours=9)

    async def pause_again(content_id, from_stage=None):
        content = await store.get_content(content_id)
        content.metadata.quota_info = QuotaPauseInfo(estimated_recovery_time=daily_reset)
        await store.save_content(content)
        return content

    pipeline.resume.side_effect = pause_again

    counts = await jobs.auto_resume_paused_content()

    assert counts["extended"] == 1
    assert store.contents["ready"].metadata.quota_info.estimated_recovery_time == daily_reset


async def test_auto_resume_extends_stale_estimate_after_new_pause(store, jobs, pipeline, paused_content):
    await paused_content("ready", timedelta(minutes=-5))

    async def pause_without_estimate(content_id, from_stage=None):
        content = await store.get_content(content_id)
        content.metadata.quota_info = QuotaPauseInfo()
        await store.save_content(content)
        return content

    pipeline.resume.side_effect = pause_without_estimate

    await jobs.auto_resume_paused_content()

    recovery = store.contents["ready"].metadata.quota_info.estimated_recovery_time
    assert recovery > utcnow() + timedelta(minutes=55)


async def test_auto_resume_counts_unexpected_failures(jobs, pipeline, paused_content):
    await paused_content("ready", timedelta(minutes=-5))
    pipeline.resume.side_effect = RuntimeError("database unavailable")

    counts = await jobs.auto_resume_paused_content()

    assert counts["failed"] == 1


async def test_quota_check_counts_paused_items(jobs, paused_content):
    await paused_content("one", timedelta(hours=1))
    await paused_content("two", timedelta(hours=2))
    assert await jobs.check_quota_paused_content() == 2


async def test_maintenance_jobs_delegate_to_deletion_service(jobs):
    jobs.deletion_service.cleanup_expired_soft_deletes.return_value = 4
    jobs.deletion_service.reconcile_stalled_sagas.return_value = {"completed": 1}

    assert await jobs.cleanup_expired_content() == 4
    assert await jobs.reconcile_deletions() == {"completed": 1}
    jobs.deletion_service.cleanup_expired_soft_deletes.assert_awaited_once_with(50)


async def test_start_and_stop_background_loops(store, pipeline, quota_service):
    jobs = ScheduledJobs(store, pipeline, quota_service, deletion_service=AsyncMock())

    jobs.start()
    assert len(jobs._tasks) == 4

    await jobs.stop()
    assert jobs._tasks == []
