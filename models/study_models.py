"""
Pydantic models for learning artifacts: flashcards, reviews, quizzes, attempts.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any, Union
from datetime import datetime
from enum import Enum

from models.content_models import utcnow


class QuestionType(str, Enum):
    MCQ = "mcq"
    TRUE_FALSE = "truefalse"
    FILL_IN = "fillin"
    ESSAY = "essay"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


DIFFICULTY_ORDER: List[Difficulty] = [
    Difficulty.BEGINNER,
    Difficulty.INTERMEDIATE,
    Difficulty.ADVANCED,
]


class FlashcardDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class SourceSegment(BaseModel):
    start_time: int = 0
    end_time: int = 0


# Flashcards
class SpacedRepetition(BaseModel):
    repetitions: int = Field(default=0, ge=0)
    interval: int = Field(default=1, ge=0)
    ease_factor: float = Field(default=2.5, ge=1.3)
    next_review_date: datetime = Field(default_factory=utcnow)
    last_review_date: Optional[datetime] = None


class FlashcardStatistics(BaseModel):
    times_reviewed: int = 0
    times_correct: int = 0
    times_incorrect: int = 0
    average_response_time: float = 0.0


class Flashcard(BaseModel):
    id: Optional[str] = None
    content_id: str
    user_id: str
    front: str
    back: str
    type: QuestionType = QuestionType.FILL_IN
    difficulty: FlashcardDifficulty = FlashcardDifficulty.MEDIUM
    tags: List[str] = []
    source_segment: Optional[SourceSegment] = None
    spaced_repetition: SpacedRepetition = Field(default_factory=SpacedRepetition)
    statistics: FlashcardStatistics = Field(default_factory=FlashcardStatistics)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FlashcardReview(BaseModel):
    """Append-only review log entry. Never updated after insert."""
    id: Optional[str] = None
    flashcard_id: str
    content_id: str
    user_id: str
    quality: int = Field(..., ge=0, le=5)
    response_time: float = 0.0
    was_correct: bool
    ease_factor: float
    interval: int
    repetitions: int
    reviewed_at: datetime = Field(default_factory=utcnow)


class FlashcardReviewRequest(BaseModel):
    user_id: str
    quality: int = Field(..., ge=0, le=5)
    response_time: float = Field(default=0.0, ge=0)


# Quizzes
class QuizQuestion(BaseModel):
    question: str
    type: QuestionType
    options: Optional[List[str]] = None
    correct_answer: Union[str, List[str]]
    explanation: Optional[str] = None
    difficulty: Difficulty = Difficulty.INTERMEDIATE
    source_segment: Optional[SourceSegment] = None
    points: int = 10
    tags: List[str] = []


class QuizStatistics(BaseModel):
    total_attempts: int = 0
    average_score: float = 0.0
    average_time_spent: float = 0.0
    completion_rate: float = 0.0


class Quiz(BaseModel):
    id: Optional[str] = None
    content_id: str
    user_id: str
    title: str = ""
    description: Optional[str] = None
    difficulty: Difficulty
    questions: List[QuizQuestion]
    total_points: int = 0
    passing_score: int = 70
    estimated_duration: int = 0
    topics_covered: List[str] = []
    version: int = 1
    is_active: bool = True
    previous_version_id: Optional[str] = None
    generator_used: Optional[str] = None
    statistics: QuizStatistics = Field(default_factory=QuizStatistics)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class QuizAnswer(BaseModel):
    question_index: int
    user_answer: Union[str, List[str]]
    is_correct: bool = False
    points_earned: int = 0
    time_spent: float = 0.0
    answered_at: datetime = Field(default_factory=utcnow)


class AttemptPerformance(BaseModel):
    strong_topics: List[str] = []
    weak_topics: List[str] = []
    topic_scores: Dict[str, float] = {}


class QuizAttempt(BaseModel):
    id: Optional[str] = None
    quiz_id: str
    content_id: str
    user_id: str
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    answers: List[QuizAnswer] = []
    score: int = 0
    total_points: int = 0
    percentage: int = 0
    time_spent: float = 0.0
    performance: AttemptPerformance = Field(default_factory=AttemptPerformance)
    feedback: Optional[str] = None
    suggested_difficulty: Optional[Difficulty] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class SubmittedAnswer(BaseModel):
    question_index: int = Field(..., ge=0)
    user_answer: Union[str, List[str]]
    time_spent: float = Field(default=0.0, ge=0)


class QuizSubmission(BaseModel):
    user_id: str
    answers: List[SubmittedAnswer]


class QuizResult(BaseModel):
    attempt: QuizAttempt
    passed: bool
    feedback: str
    suggested_difficulty: Difficulty


class QuizGenerateRequest(BaseModel):
    user_id: str
    difficulty: Difficulty = Difficulty.INTERMEDIATE
    regenerate: bool = True
    count: Optional[int] = Field(default=None, ge=1, le=50)


def quiz_from_generated(data: Dict[str, Any], **fields: Any) -> Quiz:
    """Build a Quiz from recovered generator output plus persistence fields"""
    questions = [QuizQuestion.model_validate(q) for q in data.get("questions", [])]
    return Quiz(
        title=data.get("title") or "",
        description=data.get("description"),
        questions=questions,
        total_points=sum(q.points for q in questions),
        estimated_duration=data.get("estimated_duration") or len(questions) * 2,
        topics_covered=data.get("topics_covered") or [],
        **fields,
    )
