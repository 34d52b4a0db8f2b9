import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.content_models import ContentStatus, StageName, StageStatus
from services.notifications import NotificationType
from services.pipeline import QUOTA_PAUSE_REASON, ContentPipeline
from services.quiz_service import QuizService
from utils.exceptions import (
    ConflictError,
    GenerationError,
    QuotaExceededError,
    StorageError,
    TranscriptError,
    ValidationError,
)
from utils.quota import parse_quota_error

DAILY_ERROR = '429 RESOURCE_EXHAUSTED {"error": {"details": [{"quotaMetric": "generate_requests_per_day"}]}}'

CARDS = [
    {
        "front": "Chlorophyll",
        "back": "Green pigment that absorbs light",
        "type": "fillin",
        "difficulty": "easy",
        "tags": ["pigments"],
        "source_segment": {"start_time": 4000, "end_time": 9000},
    },
    {
        "front": "Photosynthesis output",
        "back": "Glucose and oxygen",
        "type": "fillin",
        "difficulty": "medium",
        "tags": ["outputs"],
        "source_segment": None,
    },
]

QUIZ = {
    "title": "Photosynthesis",
    "questions": [
        {
            "question": "Which pigment absorbs light?",
            "type": "mcq",
            "options": ["Chlorophyll", "Keratin"],
            "correct_answer": "Chlorophyll",
        }
    ],
}


@pytest.fixture
def generator():
    mock = AsyncMock()
    mock.generate_summary.side_effect = lambda transcript, level: {"text": f"{level.value} summary", "word_count": 2}
    mock.generate_flashcards.return_value = CARDS
    mock.generate_quiz.return_value = QUIZ
    return mock


@pytest.fixture
def transcripts(transcript_for):
    mock = AsyncMock()
    mock.fetch.return_value = transcript_for()
    return mock


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def pipeline(store, vector_store, generator, transcripts, notifier, no_sleep):
    return ContentPipeline(
        store,
        generator,
        transcripts,
        vector_store,
        QuizService(store, generator),
        notifier=notifier,
        embed=AsyncMock(side_effect=lambda texts: [[0.1, 0.2, 0.3] for _ in texts]),
        sleep=no_sleep,
        quiz_attempts=2,
    )


def _events(notifier):
    return [call.args[0] for call in notifier.notify.call_args_list]


async def test_process_runs_every_stage(store, vector_store, make_content, pipeline, notifier):
    await make_content()

    content = await pipeline.process("content-1")

    assert content.status == ContentStatus.COMPLETED
    stored = store.contents["content-1"]
    assert all(stored.stages[s].status == StageStatus.COMPLETED for s in StageName)
    assert stored.metadata.duration_seconds == 1800
    assert [s.level.value for s in store.summaries["content-1"]] == ["quick", "brief", "detailed"]
    assert len(store.flashcards) == 2
    assert len([q for q in store.quizzes.values() if q.is_active]) == 3
    assert vector_store.vectors["content-1"]
    assert _events(notifier)[-1].type == NotificationType.COMPLETED


async def test_quota_error_pauses_with_recovery_metadata(store, make_content, pipeline, generator, notifier):
    await make_content()
    generator.generate_summary.side_effect = QuotaExceededError(parse_quota_error(DAILY_ERROR))

    content = await pipeline.process("content-1")

    assert content.status == ContentStatus.PAUSED
    stored = store.contents["content-1"]
    assert stored.stages[StageName.TRANSCRIPTION].status == StageStatus.COMPLETED
    assert stored.stages[StageName.VECTORIZATION].status == StageStatus.COMPLETED
    assert stored.stages[StageName.SUMMARIZATION].status == StageStatus.PAUSED
    assert stored.stages[StageName.FLASHCARD_GENERATION].status == StageStatus.PENDING
    assert stored.metadata.paused_reason == QUOTA_PAUSE_REASON
    assert stored.metadata.paused_stage == StageName.SUMMARIZATION
    assert stored.metadata.quota_info.estimated_recovery_time is not None
    assert _events(notifier)[-1].type == NotificationType.PAUSED

    status = await pipeline.get_status("content-1")
    assert status["paused"]["stage"] == "summarization"


async def test_resume_continues_from_paused_stage(store, make_content, pipeline, generator, transcripts, notifier):
    await make_content()
    summarize = generator.generate_summary.side_effect
    generator.generate_summary.side_effect = QuotaExceededError(parse_quota_error(DAILY_ERROR))
    await pipeline.process("content-1")

    generator.generate_summary.side_effect = summarize
    content = await pipeline.resume("content-1")

    assert content.status == ContentStatus.COMPLETED
    assert content.metadata.paused_reason is None
    assert transcripts.fetch.await_count == 1
    assert NotificationType.RESUMED in [e.type for e in _events(notifier)]


async def test_resume_of_completed_content_is_a_no_op(store, make_content, pipeline, transcripts, generator):
    await make_content()
    await pipeline.process("content-1")
    calls = generator.generate_summary.await_count
    before = store.contents["content-1"].to_row()

    content = await pipeline.resume("content-1")

    assert content.status == ContentStatus.COMPLETED
    assert generator.generate_summary.await_count == calls
    assert transcripts.fetch.await_count == 1
    assert store.contents["content-1"].to_row() == before


async def test_resume_from_stage_checks_preconditions(store, make_content, pipeline, generator):
    await make_content()
    generator.generate_summary.side_effect = QuotaExceededError(parse_quota_error(DAILY_ERROR))
    await pipeline.process("content-1")

    with pytest.raises(ValidationError) as exc_info:
        await pipeline.resume("content-1", StageName.QUIZ_GENERATION)
    assert exc_info.value.error_code == "STAGE_PRECONDITION_FAILED"


async def test_quiz_failure_does_not_fail_content(store, make_content, pipeline, generator, no_sleep):
    await make_content()
    generator.generate_quiz.side_effect = GenerationError("model returned garbage")

    content = await pipeline.process("content-1")

    assert content.status == ContentStatus.COMPLETED
    assert store.contents["content-1"].stages[StageName.QUIZ_GENERATION].status == StageStatus.FAILED
    assert [c.args[0] for c in no_sleep.await_args_list] == [2, 2, 2]


async def test_hard_stage_failure_fails_content(store, make_content, pipeline, transcripts, notifier):
    await make_content()
    transcripts.fetch.side_effect = TranscriptError("Transcripts are disabled for this video")

    content = await pipeline.process("content-1")

    assert content.status == ContentStatus.FAILED
    stored = store.contents["content-1"]
    assert stored.metadata.error.startswith("transcription:")
    assert stored.stages[StageName.TRANSCRIPTION].retry_count == 1
    assert stored.stages[StageName.VECTORIZATION].status == StageStatus.PENDING
    assert _events(notifier)[-1].type == NotificationType.FAILED


async def test_quiz_stage_completes_when_some_difficulties_succeed(store, make_content, pipeline, generator):
    await make_content()

    def quiz_for(transcript, difficulty, count=None, focus=None):
        if difficulty.value == "advanced":
            raise GenerationError("model returned garbage")
        return QUIZ

    generator.generate_quiz.side_effect = quiz_for

    content = await pipeline.process("content-1")

    assert content.status == ContentStatus.COMPLETED
    assert store.contents["content-1"].stages[StageName.QUIZ_GENERATION].status == StageStatus.COMPLETED
    active = sorted(q.difficulty.value for q in store.quizzes.values() if q.is_active)
    assert active == ["beginner", "intermediate"]


async def test_quota_during_quiz_stage_pauses_content(store, make_content, pipeline, generator):
    await make_content()
    generator.generate_quiz.side_effect = QuotaExceededError(parse_quota_error(DAILY_ERROR))

    content = await pipeline.process("content-1")

    assert content.status == ContentStatus.PAUSED
    stored = store.contents["content-1"]
    assert stored.stages[StageName.FLASHCARD_GENERATION].status == StageStatus.COMPLETED
    assert stored.stages[StageName.QUIZ_GENERATION].status == StageStatus.PAUSED
    assert stored.metadata.paused_stage == StageName.QUIZ_GENERATION


async def test_second_run_for_same_content_is_rejected(make_content, pipeline, transcripts, transcript_for):
    await make_content()
    release = asyncio.Event()

    async def slow_fetch(content):
        await release.wait()
        return transcript_for()

    transcripts.fetch.side_effect = slow_fetch
    first = asyncio.create_task(pipeline.process("content-1"))
    await asyncio.sleep(0)

    with pytest.raises(ConflictError):
        await pipeline.process("content-1")
    with pytest.raises(ConflictError):
        pipeline.start_processing("content-1", resume=True)

    release.set()
    content = await first
    assert content.status == ContentStatus.COMPLETED
    assert transcripts.fetch.await_count == 1

    # The guard is released once the run finishes
    again = await pipeline.resume("content-1")
    assert again.status == ContentStatus.COMPLETED


async def test_storage_error_recording_a_stage_fails_content(store, make_content, pipeline, monkeypatch):
    await make_content()
    save = store.save_content
    raised = []

    async def flaky_save(content):
        if content.stages[StageName.TRANSCRIPTION].status == StageStatus.COMPLETED and not raised:
            raised.append(content.id)
            raise StorageError("connection reset")
        return await save(content)

    monkeypatch.setattr(store, "save_content", flaky_save)

    content = await pipeline.process("content-1")

    assert content.status == ContentStatus.FAILED
    stored = store.contents["content-1"]
    assert stored.status == ContentStatus.FAILED
    assert stored.stages[StageName.TRANSCRIPTION].status == StageStatus.FAILED
    assert stored.metadata.error == "transcription: connection reset"
