from datetime import date, timedelta

import pytest

from models.study_models import Flashcard, SpacedRepetition
from services.spaced_repetition import FlashcardService, is_mastered, review_streak, schedule
from tests.fakes import utc
from utils.exceptions import NotFoundError, ValidationError

NOW = utc(2026, 3, 1, 9, 0, 0)


def test_first_correct_review():
    """First correct answer: interval=1, repetitions=1."""
    result = schedule(quality=4, repetitions=0, interval=1, ease_factor=2.5, now=NOW)
    assert result["interval"] == 1
    assert result["repetitions"] == 1
    assert result["ease_factor"] == pytest.approx(2.5)
    assert result["next_review_date"] == NOW + timedelta(days=1)


def test_second_correct_review():
    result = schedule(quality=4, repetitions=1, interval=1, ease_factor=2.5, now=NOW)
    assert result["interval"] == 6
    assert result["repetitions"] == 2


def test_third_review_uses_previous_ease_factor():
    """round(6 * 2.5) = 15, even though quality 5 raises the ease factor."""
    result = schedule(quality=5, repetitions=2, interval=6, ease_factor=2.5, now=NOW)
    assert result["interval"] == 15
    assert result["ease_factor"] == pytest.approx(2.6)


def test_interval_rounds_half_up():
    # 5 * 2.5 = 12.5 -> 13
    result = schedule(quality=3, repetitions=3, interval=5, ease_factor=2.5, now=NOW)
    assert result["interval"] == 13


def test_failed_review_resets_progress():
    result = schedule(quality=2, repetitions=5, interval=40, ease_factor=2.5, now=NOW)
    assert result["repetitions"] == 0
    assert result["interval"] == 1
    assert result["ease_factor"] == pytest.approx(2.18)


def test_ease_factor_floor():
    result = schedule(quality=0, repetitions=0, interval=1, ease_factor=1.3, now=NOW)
    assert result["ease_factor"] == 1.3


@pytest.mark.parametrize("quality", [-1, 6])
def test_quality_out_of_range(quality):
    with pytest.raises(ValidationError):
        schedule(quality=quality, repetitions=0, interval=1, ease_factor=2.5)


def test_mastery_needs_repetitions_and_interval():
    assert is_mastered(SpacedRepetition(repetitions=5, interval=30))
    assert not is_mastered(SpacedRepetition(repetitions=5, interval=29))
    assert not is_mastered(SpacedRepetition(repetitions=4, interval=60))


def test_review_streak():
    today = date(2026, 3, 10)
    days = [date(2026, 3, 9), date(2026, 3, 8), date(2026, 3, 6)]
    assert review_streak(days, today) == 2
    assert review_streak(days + [today], today) == 3
    assert review_streak([date(2026, 3, 1)], today) == 0


async def _card(store, **fields):
    return await store.save_flashcard(Flashcard(
        content_id="content-1",
        user_id=fields.pop("user_id", "user-1"),
        front="Chlorophyll",
        back="Green pigment",
        **fields,
    ))


async def test_review_updates_schedule_and_statistics(store):
    card = await _card(store)
    service = FlashcardService(store)

    reviewed = await service.review_flashcard(card.id, "user-1", quality=4, response_time_ms=3000)
    reviewed = await service.review_flashcard(card.id, "user-1", quality=1, response_time_ms=1000)

    assert reviewed.spaced_repetition.repetitions == 0
    assert reviewed.spaced_repetition.interval == 1
    assert reviewed.statistics.times_reviewed == 2
    assert reviewed.statistics.times_correct == 1
    assert reviewed.statistics.times_incorrect == 1
    assert reviewed.statistics.average_response_time == 2000
    assert [r.quality for r in store.reviews] == [4, 1]


async def test_review_log_failure_does_not_fail_review(store):
    card = await _card(store)
    store.fail_review_log = True

    reviewed = await FlashcardService(store).review_flashcard(card.id, "user-1", quality=5)

    assert reviewed.spaced_repetition.repetitions == 1
    assert store.flashcards[card.id].statistics.times_reviewed == 1


async def test_review_rejects_other_users_card(store):
    card = await _card(store, user_id="someone-else")
    with pytest.raises(NotFoundError):
        await FlashcardService(store).review_flashcard(card.id, "user-1", quality=3)


async def test_due_flashcards_sorted_by_due_date(store):
    service = FlashcardService(store)
    later = await _card(store, spaced_repetition=SpacedRepetition(next_review_date=utc(2026, 1, 2)))
    sooner = await _card(store, spaced_repetition=SpacedRepetition(next_review_date=utc(2026, 1, 1)))
    await _card(store, spaced_repetition=SpacedRepetition(next_review_date=utc(2999, 1, 1)))

    due = await service.get_due_flashcards("user-1")
    assert [c.id for c in due] == [sooner.id, later.id]


async def test_stats_and_reset(store):
    service = FlashcardService(store)
    mastered = await _card(store, spaced_repetition=SpacedRepetition(repetitions=6, interval=45, next_review_date=utc(2999, 1, 1)))
    await _card(store)
    await service.review_flashcard(mastered.id, "user-1", quality=5)

    stats = await service.get_flashcard_stats("user-1")
    assert stats["total"] == 2
    assert stats["mastered"] == 1
    assert stats["new"] == 1
    assert stats["average_accuracy"] == 100.0

    reset = await service.reset_flashcard(mastered.id, "user-1")
    assert reset.spaced_repetition.repetitions == 0
    assert reset.spaced_repetition.ease_factor == 2.5


async def test_performance_analytics(store):
    service = FlashcardService(store)
    card = await _card(store)
    for quality in (5, 2, 4):
        await service.review_flashcard(card.id, "user-1", quality=quality, response_time_ms=1500)

    analytics = await service.get_performance_analytics("user-1")
    assert analytics["total_reviews"] == 3
    assert analytics["quality_distribution"][5] == 1
    assert analytics["quality_distribution"][2] == 1
    assert analytics["average_response_time"] == 1500
    assert analytics["accuracy_trend"][0]["accuracy"] == pytest.approx(66.7)
    assert analytics["streak"] == 1
