"""
Quiz generation, versioning and attempts.

Generation is coalesced per (content, user, difficulty): concurrent requests
share one generator call. Each generation creates a new version linked to
the previous one; the previous active version is deactivated in the same
store call that activates the new one. Old versions beyond the retention
limit are pruned unless an attempt references them.
"""

import logging
from typing import Any, Dict, List, Optional

from models.content_models import utcnow
from models.study_models import (
    AttemptPerformance,
    AttemptStatus,
    Difficulty,
    Quiz,
    QuizAttempt,
    QuizResult,
    SubmittedAnswer,
    quiz_from_generated,
)
from services import quiz_scoring
from services.single_flight import SingleFlight
from services.study_generation import StudyGenerator
from utils.exceptions import ConflictError, NotFoundError, ValidationError
from utils.settings import PASSING_SCORE, QUIZ_VERSION_RETENTION

logger = logging.getLogger(__name__)


class QuizService:
    def __init__(
        self,
        store,
        generator: StudyGenerator,
        single_flight: Optional[SingleFlight] = None,
        retention: int = QUIZ_VERSION_RETENTION,
    ):
        self.store = store
        self.generator = generator
        self.single_flight = single_flight or SingleFlight()
        self.retention = retention

    # ── Generation ────────────────────────────────────────────────────────

    async def generate_quiz(
        self,
        content_id: str,
        user_id: str,
        difficulty: Difficulty,
        regenerate: bool = True,
        count: Optional[int] = None,
        focus: Optional[str] = None,
    ) -> Quiz:
        difficulty = Difficulty(difficulty)
        key = f"{content_id}:{user_id}:{difficulty.value}"
        return await self.single_flight.do(
            key, lambda: self._generate(content_id, user_id, difficulty, regenerate, count, focus)
        )

    async def _generate(
        self,
        content_id: str,
        user_id: str,
        difficulty: Difficulty,
        regenerate: bool,
        count: Optional[int],
        focus: Optional[str],
    ) -> Quiz:
        if not regenerate:
            existing = await self.store.get_active_quiz(content_id, user_id, difficulty.value)
            if existing is not None:
                logger.info(f"[quiz] Returning existing {difficulty.value} quiz {existing.id} for {content_id}")
                return existing

        content = await self.store.get_content(content_id)
        if content is None or content.is_deleted or content.user_id != user_id:
            raise NotFoundError(f"Content {content_id} not found")
        transcript = await self.store.get_transcript(content_id)
        if transcript is None:
            raise ValidationError(
                f"Content {content_id} has no transcript yet",
                error_code="TRANSCRIPT_NOT_READY",
            )

        data = await self.generator.generate_quiz(transcript, difficulty, count, focus)
        return await self.save_generated_quiz(content_id, user_id, difficulty, data)

    async def save_generated_quiz(
        self,
        content_id: str,
        user_id: str,
        difficulty: Difficulty,
        data: Dict[str, Any],
    ) -> Quiz:
        versions = await self.store.list_quiz_versions(content_id, user_id, difficulty.value)
        previous = next((v for v in versions if v.is_active), versions[0] if versions else None)
        next_version = (max(v.version for v in versions) + 1) if versions else 1

        quiz = quiz_from_generated(
            data,
            content_id=content_id,
            user_id=user_id,
            difficulty=difficulty,
            version=next_version,
            previous_version_id=previous.id if previous else None,
            generator_used=data.get("generator_used"),
            passing_score=PASSING_SCORE,
        )
        active_previous_id = previous.id if previous is not None and previous.is_active else None
        saved = await self.store.activate_quiz_version(quiz, active_previous_id)
        logger.info(
            f"[quiz] Saved {difficulty.value} quiz v{next_version} ({len(saved.questions)} questions) "
            f"for content {content_id}"
        )

        await self._apply_retention(content_id, user_id, difficulty)
        return saved

    async def _apply_retention(self, content_id: str, user_id: str, difficulty: Difficulty) -> List[str]:
        versions = await self.store.list_quiz_versions(content_id, user_id, difficulty.value)
        if len(versions) <= self.retention:
            return []

        candidates = [v for v in versions[self.retention:] if not v.is_active]
        referenced = set(await self.store.quiz_ids_with_attempts([v.id for v in candidates]))
        pruned = [v.id for v in candidates if v.id not in referenced]
        if not pruned:
            return []

        await self.store.delete_quizzes(pruned)
        pruned_set = set(pruned)
        for version in versions:
            if version.id not in pruned_set and version.previous_version_id in pruned_set:
                await self.store.set_previous_version(version.id, None)
        logger.info(f"[quiz] Pruned {len(pruned)} old {difficulty.value} versions for content {content_id}")
        return pruned

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_quiz(self, quiz_id: str, user_id: Optional[str] = None) -> Quiz:
        quiz = await self.store.get_quiz(quiz_id)
        if quiz is None or (user_id is not None and quiz.user_id != user_id):
            raise NotFoundError(f"Quiz {quiz_id} not found", error_code="QUIZ_NOT_FOUND")
        return quiz

    async def list_quizzes(self, content_id: str, user_id: str) -> List[Quiz]:
        return await self.store.list_quizzes(content_id, user_id)

    # ── Attempts ──────────────────────────────────────────────────────────

    async def _get_attempt(self, attempt_id: str, user_id: str) -> QuizAttempt:
        attempt = await self.store.get_attempt(attempt_id)
        if attempt is None or attempt.user_id != user_id:
            raise NotFoundError(f"Quiz attempt {attempt_id} not found", error_code="ATTEMPT_NOT_FOUND")
        return attempt

    async def start_attempt(self, quiz_id: str, user_id: str) -> QuizAttempt:
        quiz = await self.get_quiz(quiz_id, user_id)
        existing = await self.store.find_in_progress_attempt(quiz_id, user_id)
        if existing is not None:
            logger.info(f"Returning existing quiz attempt {existing.id}")
            return existing

        attempt = QuizAttempt(
            quiz_id=quiz_id,
            content_id=quiz.content_id,
            user_id=user_id,
            total_points=quiz.total_points,
        )
        attempt = await self.store.save_attempt(attempt)
        logger.info(f"Started quiz attempt {attempt.id} for quiz {quiz_id}")
        return attempt

    async def submit_attempt(self, attempt_id: str, user_id: str, answers: List[SubmittedAnswer]) -> QuizResult:
        attempt = await self._get_attempt(attempt_id, user_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise ConflictError(f"Quiz attempt {attempt_id} already {attempt.status.value}")
        quiz = await self.get_quiz(attempt.quiz_id)

        graded = quiz_scoring.grade_answers(quiz.questions, answers)
        strong, weak, topic_scores = quiz_scoring.analyze_topics(graded, quiz.questions)

        attempt.answers = graded
        attempt.score = sum(a.points_earned for a in graded)
        attempt.total_points = quiz.total_points
        attempt.percentage = quiz_scoring.percentage_of(attempt.score, quiz.total_points)
        attempt.time_spent = sum(a.time_spent for a in graded)
        attempt.performance = AttemptPerformance(strong_topics=strong, weak_topics=weak, topic_scores=topic_scores)
        attempt.status = AttemptStatus.COMPLETED
        attempt.completed_at = utcnow()

        passed = quiz_scoring.is_passing(attempt.percentage, quiz.passing_score)
        avg_time = attempt.time_spent / len(graded) if graded else 0.0
        suggested = quiz_scoring.recommend_next_difficulty(quiz.difficulty, attempt.percentage, avg_time)
        attempt.feedback = quiz_scoring.build_feedback(attempt.percentage, passed, strong, weak)
        attempt.suggested_difficulty = suggested

        attempt = await self.store.save_attempt(attempt)
        quiz.statistics = quiz_scoring.update_statistics(quiz.statistics, attempt)
        quiz.updated_at = utcnow()
        await self.store.save_quiz(quiz)

        logger.info(
            f"Quiz attempt {attempt_id} completed with score {attempt.score}/{quiz.total_points} "
            f"({attempt.percentage}%)"
        )
        return QuizResult(attempt=attempt, passed=passed, feedback=attempt.feedback, suggested_difficulty=suggested)

    async def abandon_attempt(self, attempt_id: str, user_id: str) -> QuizAttempt:
        attempt = await self._get_attempt(attempt_id, user_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise ConflictError(f"Quiz attempt {attempt_id} already {attempt.status.value}")
        attempt.status = AttemptStatus.ABANDONED
        attempt.completed_at = utcnow()
        attempt = await self.store.save_attempt(attempt)

        quiz = await self.store.get_quiz(attempt.quiz_id)
        if quiz is not None:
            quiz.statistics = quiz_scoring.update_statistics(quiz.statistics, attempt)
            await self.store.save_quiz(quiz)
        return attempt

    async def list_attempts(
        self,
        user_id: str,
        quiz_id: Optional[str] = None,
        content_id: Optional[str] = None,
    ) -> List[QuizAttempt]:
        return await self.store.list_attempts(user_id, quiz_id, content_id)
