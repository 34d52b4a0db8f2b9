"""SM-2 spaced repetition scheduling and flashcard review service."""

import math
import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from models.content_models import utcnow
from models.study_models import Flashcard, FlashcardReview, SpacedRepetition
from utils.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5
MASTERED_REPETITIONS = 5
MASTERED_INTERVAL = 30
DIFFICULT_EASE_FACTOR = 2.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def schedule(
    quality: int,
    repetitions: int,
    interval: int,
    ease_factor: float,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Calculate next review parameters using SM-2.

    Args:
        quality: Rating 0-5 (0=complete blackout, 5=perfect)
        repetitions: Number of consecutive correct reviews
        interval: Current interval in days
        ease_factor: Current ease factor (minimum 1.3)
        now: Review time, defaults to the current UTC time

    Returns:
        Dict with repetitions, interval, ease_factor and next_review_date.
    """
    if not 0 <= quality <= 5:
        raise ValidationError(f"Quality must be between 0 and 5, got {quality}")
    now = now or utcnow()

    if quality >= 3:
        if repetitions == 0:
            new_interval = 1
        elif repetitions == 1:
            new_interval = 6
        else:
            # Uses the ease factor from before this review
            new_interval = _round_half_up(interval * ease_factor)
        new_repetitions = repetitions + 1
    else:
        new_repetitions = 0
        new_interval = 1

    new_ef = ease_factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
    new_ef = max(MIN_EASE_FACTOR, new_ef)

    return {
        "repetitions": new_repetitions,
        "interval": new_interval,
        "ease_factor": new_ef,
        "next_review_date": now + timedelta(days=new_interval),
    }


def is_mastered(sr: SpacedRepetition) -> bool:
    return sr.repetitions >= MASTERED_REPETITIONS and sr.interval >= MASTERED_INTERVAL


def review_streak(review_days: List[date], today: date) -> int:
    """Consecutive review days ending today, or yesterday if nothing yet today."""
    days = set(review_days)
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


class FlashcardService:
    def __init__(self, store):
        self.store = store

    async def _get_owned(self, flashcard_id: str, user_id: str) -> Flashcard:
        card = await self.store.get_flashcard(flashcard_id)
        if card is None or card.user_id != user_id:
            raise NotFoundError(f"Flashcard {flashcard_id} not found", error_code="FLASHCARD_NOT_FOUND")
        return card

    async def review_flashcard(
        self,
        flashcard_id: str,
        user_id: str,
        quality: int,
        response_time_ms: float = 0.0,
    ) -> Flashcard:
        if not isinstance(quality, int) or not 0 <= quality <= 5:
            raise ValidationError("Quality must be an integer between 0 and 5")
        card = await self._get_owned(flashcard_id, user_id)
        now = utcnow()

        sr = card.spaced_repetition
        result = schedule(quality, sr.repetitions, sr.interval, sr.ease_factor, now)
        card.spaced_repetition = SpacedRepetition(
            repetitions=result["repetitions"],
            interval=result["interval"],
            ease_factor=result["ease_factor"],
            next_review_date=result["next_review_date"],
            last_review_date=now,
        )

        stats = card.statistics
        correct = quality >= 3
        stats.times_reviewed += 1
        if correct:
            stats.times_correct += 1
        else:
            stats.times_incorrect += 1
        stats.average_response_time = (
            stats.average_response_time * (stats.times_reviewed - 1) + response_time_ms
        ) / stats.times_reviewed
        card.updated_at = now

        await self.store.save_flashcard(card)

        review = FlashcardReview(
            flashcard_id=card.id,
            content_id=card.content_id,
            user_id=user_id,
            quality=quality,
            response_time=response_time_ms,
            was_correct=correct,
            ease_factor=result["ease_factor"],
            interval=result["interval"],
            repetitions=result["repetitions"],
            reviewed_at=now,
        )
        try:
            await self.store.add_flashcard_review(review)
        except Exception as e:
            logger.error(f"Failed to record review for flashcard {card.id} (non-fatal): {e}")

        logger.info(
            f"Reviewed flashcard {card.id}: quality={quality}, interval={result['interval']}d, "
            f"ef={result['ease_factor']:.2f}"
        )
        return card

    async def get_due_flashcards(self, user_id: str, content_id: Optional[str] = None, limit: int = 20) -> List[Flashcard]:
        now = utcnow()
        cards = await self.store.list_flashcards(user_id, content_id)
        due = [c for c in cards if c.spaced_repetition.next_review_date <= now]
        due.sort(key=lambda c: c.spaced_repetition.next_review_date)
        return due[:limit]

    async def get_flashcard_stats(self, user_id: str) -> Dict[str, Any]:
        now = utcnow()
        end_of_today = datetime.combine(now.date(), datetime.max.time(), tzinfo=timezone.utc)
        cards = await self.store.list_flashcards(user_id)

        mastered = sum(1 for c in cards if is_mastered(c.spaced_repetition))
        reviewed = [c for c in cards if c.statistics.times_reviewed > 0]
        total_reviews = sum(c.statistics.times_reviewed for c in cards)
        total_correct = sum(c.statistics.times_correct for c in cards)

        return {
            "total": len(cards),
            "due_today": sum(1 for c in cards if c.spaced_repetition.next_review_date <= end_of_today),
            "mastered": mastered,
            "learning": len(reviewed) - sum(1 for c in reviewed if is_mastered(c.spaced_repetition)),
            "new": len(cards) - len(reviewed),
            "average_accuracy": round(total_correct / total_reviews * 100, 1) if total_reviews else 0.0,
        }

    async def get_performance_analytics(self, user_id: str, days: int = 30) -> Dict[str, Any]:
        now = utcnow()
        reviews = await self.store.list_flashcard_reviews(user_id, since=now - timedelta(days=days))

        per_day: Dict[str, List[FlashcardReview]] = {}
        for review in reviews:
            per_day.setdefault(review.reviewed_at.date().isoformat(), []).append(review)

        quality = Counter(r.quality for r in reviews)
        return {
            "reviews_over_time": [{"date": d, "count": len(rs)} for d, rs in sorted(per_day.items())],
            "quality_distribution": {q: quality.get(q, 0) for q in range(6)},
            "average_response_time": (
                round(sum(r.response_time for r in reviews) / len(reviews), 1) if reviews else 0.0
            ),
            "accuracy_trend": [
                {"date": d, "accuracy": round(sum(1 for r in rs if r.was_correct) / len(rs) * 100, 1)}
                for d, rs in sorted(per_day.items())
            ],
            "total_reviews": len(reviews),
            "streak": review_streak([r.reviewed_at.date() for r in reviews], now.date()),
        }

    async def get_content_analytics(self, user_id: str, content_id: str) -> Dict[str, Any]:
        cards = await self.store.list_flashcards(user_id, content_id)
        reviews = await self.store.list_flashcard_reviews(user_id, content_id=content_id)
        mastered = sum(1 for c in cards if is_mastered(c.spaced_repetition))
        difficult = sum(1 for c in cards if c.spaced_repetition.ease_factor < DIFFICULT_EASE_FACTOR)
        return {
            "content_id": content_id,
            "total_flashcards": len(cards),
            "mastered": mastered,
            "difficult": difficult,
            "learning": len(cards) - mastered,
            "average_quality": round(sum(r.quality for r in reviews) / len(reviews), 2) if reviews else 0.0,
            "total_reviews": len(reviews),
            "time_spent_seconds": round(sum(r.response_time for r in reviews) / 1000, 1),
        }

    async def reset_flashcard(self, flashcard_id: str, user_id: str) -> Flashcard:
        card = await self._get_owned(flashcard_id, user_id)
        card.spaced_repetition = SpacedRepetition(
            repetitions=0,
            interval=1,
            ease_factor=DEFAULT_EASE_FACTOR,
            next_review_date=utcnow(),
        )
        card.updated_at = utcnow()
        await self.store.save_flashcard(card)
        return card
