"""
FastAPI routes for flashcard review and quizzes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from models.study_models import FlashcardReviewRequest, QuizGenerateRequest, QuizSubmission
from routes.dependencies import get_flashcard_service, get_quiz_service
from services.quiz_service import QuizService
from services.spaced_repetition import FlashcardService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["study"])


class UserRequest(BaseModel):
    user_id: str


# ─── Flashcards ───────────────────────────────────────────────────────────────

@router.post("/flashcards/{flashcard_id}/review")
async def review_flashcard(
    flashcard_id: str,
    request: FlashcardReviewRequest,
    service: FlashcardService = Depends(get_flashcard_service),
):
    """Rate recall 0-5; the card is rescheduled with SM-2."""
    card = await service.review_flashcard(flashcard_id, request.user_id, request.quality, request.response_time)
    return {"success": True, "flashcard": card}


@router.get("/flashcards/due")
async def get_due_flashcards(
    user_id: str = Query(...),
    content_id: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    service: FlashcardService = Depends(get_flashcard_service),
):
    cards = await service.get_due_flashcards(user_id, content_id, limit)
    return {"count": len(cards), "flashcards": cards}


@router.get("/flashcards/stats")
async def get_flashcard_stats(user_id: str = Query(...), service: FlashcardService = Depends(get_flashcard_service)):
    return await service.get_flashcard_stats(user_id)


@router.get("/flashcards/analytics")
async def get_flashcard_analytics(
    user_id: str = Query(...),
    days: int = Query(30, ge=1, le=365),
    content_id: Optional[str] = Query(None),
    service: FlashcardService = Depends(get_flashcard_service),
):
    if content_id:
        return await service.get_content_analytics(user_id, content_id)
    return await service.get_performance_analytics(user_id, days)


@router.post("/flashcards/{flashcard_id}/reset")
async def reset_flashcard(
    flashcard_id: str,
    request: UserRequest,
    service: FlashcardService = Depends(get_flashcard_service),
):
    card = await service.reset_flashcard(flashcard_id, request.user_id)
    return {"success": True, "flashcard": card}


# ─── Quizzes ──────────────────────────────────────────────────────────────────

@router.post("/contents/{content_id}/quizzes", status_code=201)
async def generate_quiz(
    content_id: str,
    request: QuizGenerateRequest,
    service: QuizService = Depends(get_quiz_service),
):
    """
    Generate a quiz for one difficulty. Concurrent requests for the same
    content, user and difficulty share a single generation.
    """
    quiz = await service.generate_quiz(
        content_id,
        request.user_id,
        request.difficulty,
        regenerate=request.regenerate,
        count=request.count,
    )
    return {"success": True, "quiz": quiz}


@router.get("/contents/{content_id}/quizzes")
async def list_quizzes(content_id: str, user_id: str = Query(...), service: QuizService = Depends(get_quiz_service)):
    quizzes = await service.list_quizzes(content_id, user_id)
    return {"count": len(quizzes), "quizzes": quizzes}


@router.get("/quizzes/{quiz_id}")
async def get_quiz(quiz_id: str, user_id: Optional[str] = Query(None), service: QuizService = Depends(get_quiz_service)):
    return await service.get_quiz(quiz_id, user_id)


@router.post("/quizzes/{quiz_id}/attempts", status_code=201)
async def start_attempt(quiz_id: str, request: UserRequest, service: QuizService = Depends(get_quiz_service)):
    return await service.start_attempt(quiz_id, request.user_id)


@router.post("/attempts/{attempt_id}/submit")
async def submit_attempt(attempt_id: str, request: QuizSubmission, service: QuizService = Depends(get_quiz_service)):
    return await service.submit_attempt(attempt_id, request.user_id, request.answers)


@router.post("/attempts/{attempt_id}/abandon")
async def abandon_attempt(attempt_id: str, request: UserRequest, service: QuizService = Depends(get_quiz_service)):
    return await service.abandon_attempt(attempt_id, request.user_id)


@router.get("/attempts")
async def list_attempts(
    user_id: str = Query(...),
    quiz_id: Optional[str] = Query(None),
    content_id: Optional[str] = Query(None),
    service: QuizService = Depends(get_quiz_service),
):
    attempts = await service.list_attempts(user_id, quiz_id, content_id)
    return {"count": len(attempts), "attempts": attempts}
