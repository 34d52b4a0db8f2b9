import asyncio
from unittest.mock import AsyncMock

import pytest

from models.study_models import AttemptStatus, Difficulty, QuizAttempt, SubmittedAnswer
from services.quiz_service import QuizService
from utils.exceptions import ConflictError, NotFoundError, ValidationError


def _quiz_data(title="Photosynthesis basics"):
    return {
        "title": title,
        "topics_covered": ["light"],
        "generator_used": "claude-haiku-4-5",
        "questions": [
            {
                "question": "Which pigment absorbs light?",
                "type": "mcq",
                "options": ["Chlorophyll", "Keratin", "Melanin", "Collagen"],
                "correct_answer": "Chlorophyll",
                "difficulty": "beginner",
                "tags": ["pigments"],
            },
            {
                "question": "Photosynthesis releases oxygen.",
                "type": "truefalse",
                "options": ["True", "False"],
                "correct_answer": "True",
                "difficulty": "beginner",
                "tags": ["outputs"],
            },
        ],
    }


@pytest.fixture
def generator():
    mock = AsyncMock()
    mock.generate_quiz.return_value = _quiz_data()
    return mock


@pytest.fixture
async def ready_content(store, make_content, transcript_for):
    content = await make_content()
    await store.save_transcript(transcript_for())
    return content


async def test_generation_requires_transcript(store, make_content, generator):
    await make_content()
    service = QuizService(store, generator)

    with pytest.raises(ValidationError) as exc_info:
        await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)
    assert exc_info.value.error_code == "TRANSCRIPT_NOT_READY"


async def test_generation_rejects_other_users_content(store, ready_content, generator):
    with pytest.raises(NotFoundError):
        await QuizService(store, generator).generate_quiz("content-1", "intruder", Difficulty.BEGINNER)


async def test_concurrent_requests_share_one_generation(store, ready_content, generator):
    async def slow_generate(*args, **kwargs):
        await asyncio.sleep(0)
        return _quiz_data()

    generator.generate_quiz.side_effect = slow_generate
    service = QuizService(store, generator)

    first, second = await asyncio.gather(
        service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER),
        service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER),
    )

    assert generator.generate_quiz.await_count == 1
    assert first.id == second.id
    assert len(store.quizzes) == 1


async def test_regeneration_creates_linked_versions(store, ready_content, generator):
    service = QuizService(store, generator)

    v1 = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)
    v2 = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)

    assert (v1.version, v2.version) == (1, 2)
    assert v2.previous_version_id == v1.id
    assert store.quizzes[v1.id].is_active is False
    assert store.quizzes[v2.id].is_active is True
    assert v2.total_points == 20


async def test_existing_quiz_is_returned_without_regenerating(store, ready_content, generator):
    service = QuizService(store, generator)
    first = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)

    again = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER, regenerate=False)

    assert again.id == first.id
    assert generator.generate_quiz.await_count == 1


async def test_retention_prunes_old_versions_and_unlinks_them(store, ready_content, generator):
    service = QuizService(store, generator, retention=3)
    versions = [await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER) for _ in range(5)]

    remaining = sorted(q.version for q in store.quizzes.values())
    assert remaining == [3, 4, 5]
    assert store.quizzes[versions[2].id].previous_version_id is None
    assert store.quizzes[versions[3].id].previous_version_id == versions[2].id


async def test_retention_keeps_versions_with_attempts(store, ready_content, generator):
    service = QuizService(store, generator, retention=3)
    v1 = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)
    await store.save_attempt(QuizAttempt(quiz_id=v1.id, content_id="content-1", user_id="user-1"))

    for _ in range(4):
        await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)

    remaining = sorted(q.version for q in store.quizzes.values())
    assert remaining == [1, 3, 4, 5]


async def test_attempt_lifecycle(store, ready_content, generator):
    service = QuizService(store, generator)
    quiz = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)

    attempt = await service.start_attempt(quiz.id, "user-1")
    assert (await service.start_attempt(quiz.id, "user-1")).id == attempt.id

    result = await service.submit_attempt(attempt.id, "user-1", [
        SubmittedAnswer(question_index=0, user_answer="chlorophyll", time_spent=20),
        SubmittedAnswer(question_index=1, user_answer="True", time_spent=10),
    ])

    assert result.passed
    assert result.attempt.score == 20
    assert result.attempt.percentage == 100
    assert result.attempt.status == AttemptStatus.COMPLETED
    assert result.suggested_difficulty == Difficulty.INTERMEDIATE
    assert store.quizzes[quiz.id].statistics.total_attempts == 1

    with pytest.raises(ConflictError):
        await service.submit_attempt(attempt.id, "user-1", [])
    with pytest.raises(ConflictError):
        await service.abandon_attempt(attempt.id, "user-1")


async def test_abandon_attempt_counts_against_completion_rate(store, ready_content, generator):
    service = QuizService(store, generator)
    quiz = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)
    attempt = await service.start_attempt(quiz.id, "user-1")

    abandoned = await service.abandon_attempt(attempt.id, "user-1")

    assert abandoned.status == AttemptStatus.ABANDONED
    assert store.quizzes[quiz.id].statistics.completion_rate == 0


async def test_attempts_are_scoped_to_their_owner(store, ready_content, generator):
    service = QuizService(store, generator)
    quiz = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)
    attempt = await service.start_attempt(quiz.id, "user-1")

    with pytest.raises(NotFoundError):
        await service.submit_attempt(attempt.id, "someone-else", [])


async def test_cannot_start_attempt_on_another_users_quiz(store, ready_content, generator):
    service = QuizService(store, generator)
    quiz = await service.generate_quiz("content-1", "user-1", Difficulty.BEGINNER)

    with pytest.raises(NotFoundError):
        await service.start_attempt(quiz.id, "someone-else")
    assert not store.attempts
