"""
Quiz grading, topic analysis, feedback and adaptive difficulty.
Pure functions over a quiz and its submitted answers.
"""

import re
import math
from typing import Dict, List, Tuple, Union

from models.study_models import (
    AttemptStatus,
    Difficulty,
    QuestionType,
    QuizAnswer,
    QuizAttempt,
    QuizQuestion,
    QuizStatistics,
    SubmittedAnswer,
)
from utils.exceptions import ValidationError
from utils.settings import PASSING_SCORE

STRONG_TOPIC_THRESHOLD = 80
WEAK_TOPIC_THRESHOLD = 60
FAST_SECONDS_PER_QUESTION = 45
DEFAULT_TOPIC = "general"

_NON_WORD = re.compile(r"[^\w\s]")

Answer = Union[str, List[str]]


def normalize_answer(answer: str) -> str:
    return _NON_WORD.sub("", str(answer).lower().strip())


def check_answer(user_answer: Answer, correct_answer: Answer, question_type: QuestionType) -> bool:
    # Essays need manual grading
    if question_type == QuestionType.ESSAY:
        return False

    if isinstance(correct_answer, list):
        user_answers = user_answer if isinstance(user_answer, list) else [user_answer]
        if not user_answers:
            return False
        correct = {normalize_answer(a) for a in correct_answer}
        return all(normalize_answer(a) in correct for a in user_answers)

    if isinstance(user_answer, list):
        if not user_answer:
            return False
        user_answer = user_answer[0]
    return normalize_answer(user_answer) == normalize_answer(correct_answer)


def grade_answers(questions: List[QuizQuestion], submitted: List[SubmittedAnswer]) -> List[QuizAnswer]:
    answers = []
    for item in submitted:
        if not 0 <= item.question_index < len(questions):
            raise ValidationError(
                f"Invalid question index: {item.question_index}",
                context={"question_count": len(questions)},
            )
        question = questions[item.question_index]
        correct = check_answer(item.user_answer, question.correct_answer, question.type)
        answers.append(QuizAnswer(
            question_index=item.question_index,
            user_answer=item.user_answer,
            is_correct=correct,
            points_earned=question.points if correct else 0,
            time_spent=item.time_spent,
        ))
    return answers


def analyze_topics(answers: List[QuizAnswer], questions: List[QuizQuestion]) -> Tuple[List[str], List[str], Dict[str, float]]:
    """Per-topic accuracy. Returns (strong, weak, scores)."""
    performance: Dict[str, List[int]] = {}
    for answer in answers:
        tags = questions[answer.question_index].tags or [DEFAULT_TOPIC]
        for tag in tags:
            correct_total = performance.setdefault(tag, [0, 0])
            correct_total[1] += 1
            if answer.is_correct:
                correct_total[0] += 1

    strong, weak, scores = [], [], {}
    for topic, (correct, total) in performance.items():
        percentage = correct / total * 100
        scores[topic] = round(percentage, 1)
        if percentage >= STRONG_TOPIC_THRESHOLD:
            strong.append(topic)
        elif percentage < WEAK_TOPIC_THRESHOLD:
            weak.append(topic)
    return strong, weak, scores


def percentage_of(score: int, total_points: int) -> int:
    if total_points <= 0:
        return 0
    return int(math.floor(score / total_points * 100 + 0.5))


def recommend_next_difficulty(current: Difficulty, percentage: float, avg_time_per_question: float) -> Difficulty:
    current = Difficulty(current)
    fast = avg_time_per_question < FAST_SECONDS_PER_QUESTION

    if percentage >= 85 or (percentage >= 80 and fast):
        if current == Difficulty.BEGINNER:
            return Difficulty.INTERMEDIATE
        return Difficulty.ADVANCED
    if percentage < 50:
        if current == Difficulty.ADVANCED:
            return Difficulty.INTERMEDIATE
        return Difficulty.BEGINNER
    if percentage < 60 and current == Difficulty.ADVANCED:
        return Difficulty.INTERMEDIATE
    return current


def build_feedback(percentage: int, passed: bool, strong_topics: List[str], weak_topics: List[str]) -> str:
    if passed:
        if percentage >= 90:
            feedback = "Excellent work! You have mastered this material. "
        elif percentage >= 80:
            feedback = "Great job! You have a strong understanding of the concepts. "
        else:
            feedback = "Good work! You passed the quiz. "
    else:
        feedback = "Keep studying! Review the material and try again. "

    if weak_topics:
        feedback += f"Focus on improving: {', '.join(weak_topics)}. "
    if strong_topics:
        feedback += f"You're doing well with: {', '.join(strong_topics)}."
    return feedback.strip()


def is_passing(percentage: int, passing_score: int = PASSING_SCORE) -> bool:
    return percentage >= passing_score


def update_statistics(stats: QuizStatistics, attempt: QuizAttempt) -> QuizStatistics:
    """Fold one finished attempt into the running averages."""
    previous = stats.total_attempts
    total = previous + 1
    completed = 100 if attempt.status == AttemptStatus.COMPLETED else 0
    return QuizStatistics(
        total_attempts=total,
        average_score=(stats.average_score * previous + attempt.percentage) / total,
        average_time_spent=(stats.average_time_spent * previous + attempt.time_spent) / total,
        completion_rate=(stats.completion_rate * previous + completed) / total,
    )
