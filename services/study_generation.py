"""
Study material generation: summaries, flashcards, quizzes and concepts.

Builds prompts from a transcript, invokes them through the resilience layer
and recovers structured output with the recovery parser. Retries after a
rejected structured output ask for fewer items.
"""

import math
import logging
from typing import Any, Dict, List, Optional

from models.content_models import SummaryLevel, Transcript
from models.generation_models import GenerationRequest
from models.study_models import Difficulty
from prompts.study_prompts import (
    RETRY_PROMPT_ADDENDUM,
    build_concept_extraction_prompt,
    build_flashcard_prompt,
    build_quiz_prompt,
    build_summary_prompt,
)
from services.chunking import format_transcript, truncate_to_tokens
from services.recovery_parser import parse_concepts, parse_flashcards, parse_quiz
from services.resilience import ResilientGenerator
from utils.model_config import TaskComplexity
from utils.settings import DEFAULT_FLASHCARD_COUNT, TRANSCRIPT_PROMPT_TOKENS

logger = logging.getLogger(__name__)

QUESTIONS_PER_HOUR = 7
MIN_QUESTIONS = 5
MAX_QUESTIONS = 30
MAX_QUESTIONS_BY_DIFFICULTY = {
    Difficulty.BEGINNER: 30,
    Difficulty.INTERMEDIATE: 20,
    Difficulty.ADVANCED: 12,
}
TOKENS_PER_QUESTION = {
    Difficulty.BEGINNER: 200,
    Difficulty.INTERMEDIATE: 300,
    Difficulty.ADVANCED: 500,
}
QUIZ_TOKEN_OVERHEAD = 1000
MAX_QUIZ_TOKENS = 30000
TOKENS_PER_FLASHCARD = 250

SUMMARY_COMPLEXITY = {
    SummaryLevel.QUICK: TaskComplexity.SIMPLE,
    SummaryLevel.BRIEF: TaskComplexity.MODERATE,
    SummaryLevel.DETAILED: TaskComplexity.COMPLEX,
}
SUMMARY_MAX_TOKENS = {
    SummaryLevel.QUICK: 200,
    SummaryLevel.BRIEF: 800,
    SummaryLevel.DETAILED: 3000,
}


def quiz_question_count(duration_seconds: Optional[int], difficulty: Difficulty) -> int:
    """ceil(hours * 7) clamped to 5..30, then capped per difficulty."""
    hours = (duration_seconds or 0) / 3600
    count = min(MAX_QUESTIONS, max(MIN_QUESTIONS, math.ceil(hours * QUESTIONS_PER_HOUR)))
    return min(count, MAX_QUESTIONS_BY_DIFFICULTY[Difficulty(difficulty)])


def quiz_token_budget(count: int, difficulty: Difficulty) -> int:
    return min(count * TOKENS_PER_QUESTION[Difficulty(difficulty)] + QUIZ_TOKEN_OVERHEAD, MAX_QUIZ_TOKENS)


def _reduced(count: int, retry: int) -> int:
    return max(1, math.ceil(count / (2 ** retry)))


class StudyGenerator:
    def __init__(self, generator: ResilientGenerator, prompt_tokens: int = TRANSCRIPT_PROMPT_TOKENS):
        self.generator = generator
        self.prompt_tokens = prompt_tokens

    async def generate_summary(self, transcript: Transcript, level: SummaryLevel) -> Dict[str, Any]:
        level = SummaryLevel(level)
        request = GenerationRequest(
            prompt=build_summary_prompt(level.value, truncate_to_tokens(transcript.full_text, self.prompt_tokens)),
            task_type="summary_generation",
            complexity=SUMMARY_COMPLEXITY[level],
            max_tokens=SUMMARY_MAX_TOKENS[level],
        )
        invocation = await self.generator.invoke(request)
        text = invocation.result.text.strip()
        logger.info(f"Generated {level.value} summary with {invocation.generator_used} ({len(text.split())} words)")
        return {"level": level, "text": text, "word_count": len(text.split()), "generator_used": invocation.generator_used}

    async def generate_flashcards(self, transcript: Transcript, count: int = DEFAULT_FLASHCARD_COUNT) -> List[Dict[str, Any]]:
        rendered = format_transcript(transcript, self.prompt_tokens)

        def build(n: int, retry: bool = False):
            prompt = build_flashcard_prompt(rendered, n)
            if retry:
                prompt += RETRY_PROMPT_ADDENDUM
            request = GenerationRequest(
                prompt=prompt,
                task_type="flashcard_generation",
                complexity=TaskComplexity.MODERATE,
                max_tokens=n * TOKENS_PER_FLASHCARD + QUIZ_TOKEN_OVERHEAD,
                expect_json=True,
            )
            return request, lambda text: parse_flashcards(text, n)

        request, parse = build(count)
        cards, invocation = await self.generator.generate_structured(
            request, parse, rescope=lambda retry: build(_reduced(count, retry), retry=True)
        )
        logger.info(f"Generated {len(cards)}/{count} flashcards with {invocation.generator_used}")
        return cards

    async def generate_quiz(
        self,
        transcript: Transcript,
        difficulty: Difficulty,
        count: Optional[int] = None,
        focus: Optional[str] = None,
    ) -> Dict[str, Any]:
        difficulty = Difficulty(difficulty)
        count = count or quiz_question_count(transcript.duration_seconds, difficulty)
        rendered = format_transcript(transcript, self.prompt_tokens)
        complexity = TaskComplexity.COMPLEX if difficulty == Difficulty.ADVANCED else TaskComplexity.MODERATE

        def build(n: int, retry: bool = False):
            prompt = build_quiz_prompt(rendered, n, difficulty.value, focus)
            if retry:
                prompt += RETRY_PROMPT_ADDENDUM
            request = GenerationRequest(
                prompt=prompt,
                task_type="quiz_generation",
                complexity=complexity,
                max_tokens=quiz_token_budget(n, difficulty),
                expect_json=True,
                temperature=0.5,
            )
            return request, lambda text: parse_quiz(text, n, difficulty.value)

        request, parse = build(count)
        quiz, invocation = await self.generator.generate_structured(
            request, parse, rescope=lambda retry: build(_reduced(count, retry), retry=True)
        )
        quiz["generator_used"] = invocation.generator_used
        if quiz.get("partial"):
            logger.warning(f"[quiz] {quiz['_warning']}")
        logger.info(f"Generated {difficulty.value} quiz: {len(quiz['questions'])}/{count} questions")
        return quiz

    async def extract_concepts(self, transcript: Transcript) -> Dict[str, List[Any]]:
        request = GenerationRequest(
            prompt=build_concept_extraction_prompt(truncate_to_tokens(transcript.full_text, self.prompt_tokens)),
            task_type="concept_extraction",
            complexity=TaskComplexity.SIMPLE,
            expect_json=True,
        )
        invocation = await self.generator.invoke(request)
        return parse_concepts(invocation.result.text)
