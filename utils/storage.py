"""
Primary store for StudyForge.
Supabase-backed persistence for contents, generated artifacts, attempts and
deletion sagas. Rows go through the pydantic models on the way in and out;
blocking client calls run in worker threads.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from clients import supabase_client as db
from models.content_models import Content, Summary, Transcript
from models.deletion_models import DeletionSaga, SagaStatus
from models.study_models import Flashcard, FlashcardReview, Quiz, QuizAttempt
from utils.exceptions import StorageError

logger = logging.getLogger(__name__)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def _with_id(model) -> Dict[str, Any]:
    if model.id is None:
        model.id = generate_uuid()
    return model.model_dump(mode="json")


async def _call(fn, *args, **kwargs):
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except StorageError:
        raise
    except Exception as e:
        logger.error(f"Supabase {fn.__name__} failed: {e}")
        raise StorageError(f"{fn.__name__} failed: {e}") from e


class SupabaseStore:
    # Contents

    async def get_content(self, content_id: str) -> Optional[Content]:
        row = await _call(db.get_content_by_id, content_id)
        return Content.from_row(row) if row else None

    async def save_content(self, content: Content) -> Content:
        content.updated_at = datetime.now(content.updated_at.tzinfo)
        await _call(db.upsert_content, content.to_row())
        return content

    async def list_paused_contents(self, reason: str, limit: int) -> List[Content]:
        rows = await _call(db.list_paused_contents, reason, limit)
        return [Content.from_row(r) for r in rows]

    async def list_deleted_contents(self, user_id: str) -> List[Content]:
        rows = await _call(db.list_deleted_contents, user_id)
        return [Content.from_row(r) for r in rows]

    async def list_soft_deleted_before(self, cutoff: datetime, limit: int) -> List[Content]:
        rows = await _call(db.list_soft_deleted_before, cutoff, limit)
        return [Content.from_row(r) for r in rows]

    async def list_content_ids(self, user_id: Optional[str] = None, limit: int = 100) -> List[str]:
        return await _call(db.list_content_ids, user_id, limit)

    async def existing_content_ids(self, content_ids: List[str]) -> List[str]:
        return await _call(db.existing_content_ids, content_ids)

    async def delete_content_cascade(self, content_id: str) -> Dict[str, int]:
        return await _call(db.delete_content_cascade, content_id)

    # Transcripts & summaries

    async def save_transcript(self, transcript: Transcript) -> Transcript:
        await _call(db.upsert_transcript, _with_id(transcript))
        return transcript

    async def get_transcript(self, content_id: str) -> Optional[Transcript]:
        row = await _call(db.get_transcript, content_id)
        return Transcript.model_validate(row) if row else None

    async def replace_summaries(self, content_id: str, summaries: List[Summary]) -> List[Summary]:
        await _call(db.replace_summaries, content_id, [_with_id(s) for s in summaries])
        return summaries

    async def get_summaries(self, content_id: str) -> List[Summary]:
        rows = await _call(db.get_summaries, content_id)
        return [Summary.model_validate(r) for r in rows]

    # Flashcards

    async def replace_flashcards(self, content_id: str, cards: List[Flashcard]) -> List[Flashcard]:
        await _call(db.replace_flashcards, content_id, [_with_id(c) for c in cards])
        return cards

    async def get_flashcard(self, flashcard_id: str) -> Optional[Flashcard]:
        row = await _call(db.get_flashcard, flashcard_id)
        return Flashcard.model_validate(row) if row else None

    async def save_flashcard(self, card: Flashcard) -> Flashcard:
        await _call(db.upsert_flashcard, _with_id(card))
        return card

    async def list_flashcards(self, user_id: str, content_id: Optional[str] = None) -> List[Flashcard]:
        rows = await _call(db.list_flashcards, user_id, content_id)
        return [Flashcard.model_validate(r) for r in rows]

    async def add_flashcard_review(self, review: FlashcardReview) -> FlashcardReview:
        await _call(db.insert_flashcard_review, _with_id(review))
        return review

    async def list_flashcard_reviews(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        content_id: Optional[str] = None,
    ) -> List[FlashcardReview]:
        rows = await _call(db.list_flashcard_reviews, user_id, since, content_id)
        return [FlashcardReview.model_validate(r) for r in rows]

    # Quizzes

    async def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        row = await _call(db.get_quiz, quiz_id)
        return Quiz.model_validate(row) if row else None

    async def save_quiz(self, quiz: Quiz) -> Quiz:
        await _call(db.upsert_quiz, _with_id(quiz))
        return quiz

    async def get_active_quiz(self, content_id: str, user_id: str, difficulty: str) -> Optional[Quiz]:
        row = await _call(db.get_active_quiz, content_id, user_id, difficulty)
        return Quiz.model_validate(row) if row else None

    async def list_quiz_versions(self, content_id: str, user_id: str, difficulty: str) -> List[Quiz]:
        rows = await _call(db.list_quiz_versions, content_id, user_id, difficulty)
        return [Quiz.model_validate(r) for r in rows]

    async def list_quizzes(self, content_id: str, user_id: Optional[str] = None) -> List[Quiz]:
        rows = await _call(db.list_quizzes, content_id, user_id)
        return [Quiz.model_validate(r) for r in rows]

    async def activate_quiz_version(self, quiz: Quiz, previous_id: Optional[str]) -> Quiz:
        row = await _call(db.activate_quiz_version, _with_id(quiz), previous_id)
        return Quiz.model_validate(row)

    async def delete_quizzes(self, quiz_ids: List[str]) -> None:
        await _call(db.delete_quizzes, quiz_ids)

    async def set_previous_version(self, quiz_id: str, previous_version_id: Optional[str]) -> None:
        await _call(db.update_quiz_link, quiz_id, previous_version_id)

    # Attempts

    async def get_attempt(self, attempt_id: str) -> Optional[QuizAttempt]:
        row = await _call(db.get_attempt, attempt_id)
        return QuizAttempt.model_validate(row) if row else None

    async def save_attempt(self, attempt: QuizAttempt) -> QuizAttempt:
        await _call(db.upsert_attempt, _with_id(attempt))
        return attempt

    async def find_in_progress_attempt(self, quiz_id: str, user_id: str) -> Optional[QuizAttempt]:
        row = await _call(db.find_in_progress_attempt, quiz_id, user_id)
        return QuizAttempt.model_validate(row) if row else None

    async def list_attempts(
        self,
        user_id: str,
        quiz_id: Optional[str] = None,
        content_id: Optional[str] = None,
    ) -> List[QuizAttempt]:
        rows = await _call(db.list_attempts, user_id, quiz_id, content_id)
        return [QuizAttempt.model_validate(r) for r in rows]

    async def quiz_ids_with_attempts(self, quiz_ids: List[str]) -> List[str]:
        return await _call(db.quiz_ids_with_attempts, quiz_ids)

    # Deletion sagas

    async def save_saga(self, saga: DeletionSaga) -> DeletionSaga:
        saga.updated_at = datetime.now(saga.updated_at.tzinfo)
        await _call(db.upsert_saga, _with_id(saga))
        return saga

    async def list_sagas(self, statuses: List[SagaStatus], updated_before: datetime, limit: int) -> List[DeletionSaga]:
        rows = await _call(db.list_sagas, [s.value for s in statuses], updated_before, limit)
        return [DeletionSaga.model_validate(r) for r in rows]

    async def latest_saga_for_content(self, content_id: str) -> Optional[DeletionSaga]:
        row = await _call(db.latest_saga_for_content, content_id)
        return DeletionSaga.model_validate(row) if row else None
