# Prompts module initialization

# Study Material Prompts
from .study_prompts import (
    build_summary_prompt,
    build_flashcard_prompt,
    build_quiz_prompt,
    build_concept_extraction_prompt,
    RETRY_PROMPT_ADDENDUM
)

__all__ = [
    'build_summary_prompt',
    'build_flashcard_prompt',
    'build_quiz_prompt',
    'build_concept_extraction_prompt',
    'RETRY_PROMPT_ADDENDUM'
]
