"""
Prompt templates for study material generation.
Summaries, flashcards, quizzes and concept extraction from a transcript.
"""

from typing import Optional


JSON_OUTPUT_RULES = """OUTPUT FORMAT - CRITICAL INSTRUCTIONS:
1. Return ONLY valid JSON (NO markdown code fences)
2. Output must be COMPLETE - do NOT cut off mid-structure
3. Ensure ALL strings are closed with quotes and ALL objects with braces
4. Escape newlines in string values as \\n and inner quotes as \\"
5. PRIORITIZE COMPLETION: if running low on output space, generate FEWER items with COMPLETE structure"""


SUMMARY_INSTRUCTIONS = {
    "quick": "Generate a quick summary (1-2 sentences) of the following content.",
    "brief": (
        "Generate a brief summary (200-300 words) of the following content. "
        "Include the main concepts and key takeaways."
    ),
    "detailed": """Generate a detailed summary (800-1200 words) of the following content.

Include:
- Main concepts and themes
- Key points with explanations
- Important examples or case studies
- Connections between ideas
- Learning objectives""",
}


def build_summary_prompt(level: str, content: str) -> str:
    """Build prompt for a quick, brief or detailed summary"""
    instructions = SUMMARY_INSTRUCTIONS[level]
    return f"""You are an expert at creating educational summaries. {instructions}

Content: {content}

{level.capitalize()} Summary:"""


def build_flashcard_prompt(transcript: str, count: int) -> str:
    return f"""You are an expert at creating educational flashcards. Generate {count} high-quality flashcards from the following transcript.

TRANSCRIPT (timestamps in milliseconds):
{transcript}

REQUIREMENTS:
- Create diverse types: mcq, truefalse, fillin and essay
- Vary difficulty levels: easy, medium and hard
- Focus on key concepts, not trivial details
- Clear, concise fronts and comprehensive backs
- Link each flashcard to its source timestamps

{JSON_OUTPUT_RULES}

JSON Structure:
{{
  "flashcards": [
    {{
      "front": "Question or prompt",
      "back": "Answer",
      "type": "fillin",
      "difficulty": "medium",
      "tags": ["concept-name"],
      "sourceTimestamp": {{ "startTime": 0, "endTime": 1000 }}
    }}
  ]
}}

Generate the flashcards now:"""


QUIZ_LEVEL_GUIDANCE = {
    "beginner": {
        "audience": "suitable for beginners",
        "focus": "Focus on fundamental concepts and basic understanding. Use simple, clear language.",
        "types": "multiple choice, true/false, fill-in-the-blank",
        "limits": "Keep questions under 150 words, explanations under 100 words",
        "points": 10,
    },
    "intermediate": {
        "audience": "for intermediate learners",
        "focus": "Test application of concepts and understanding of relationships.",
        "types": "multiple choice, fill-in-the-blank and short essay",
        "limits": "Keep questions under 200 words, explanations under 150 words",
        "points": 15,
    },
    "advanced": {
        "audience": "for advanced learners",
        "focus": "Test synthesis, analysis and evaluation of concepts. Include scenario-based questions.",
        "types": "multiple choice, fill-in-the-blank and essay",
        "limits": "Keep questions under 250 words, explanations under 200 words",
        "points": 20,
    },
}


def build_quiz_prompt(transcript: str, count: int, difficulty: str, focus: Optional[str] = None) -> str:
    """Build prompt for quiz generation at one difficulty level"""
    guidance = QUIZ_LEVEL_GUIDANCE[difficulty]
    focus_section = f"\nFOCUS AREAS: {focus}\n" if focus else ""

    return f"""You are an expert educational content creator. Generate a {difficulty}-level quiz from the following transcript.

TRANSCRIPT (timestamps in milliseconds):
{transcript}
{focus_section}
REQUIREMENTS:
- Generate EXACTLY {count} questions {guidance["audience"]}
- {guidance["focus"]}
- Include a mix of question types: {guidance["types"]}
- Each question should test one specific concept
- Provide clear explanations for correct answers
- Each question MUST include a "sourceSegment" object with "startTime" and "endTime" in milliseconds
- {guidance["limits"]}

{JSON_OUTPUT_RULES}

JSON Structure:
{{
  "questions": [
    {{
      "question": "Your question here",
      "type": "mcq",
      "options": ["Option A", "Option B", "Option C", "Option D"],
      "correctAnswer": "Option A",
      "explanation": "Brief explanation here",
      "difficulty": "{difficulty}",
      "sourceSegment": {{ "startTime": 0, "endTime": 1000 }},
      "points": {guidance["points"]},
      "tags": ["concept-name"]
    }}
  ],
  "title": "Quiz Title",
  "description": "Quiz Description",
  "estimatedDuration": 10,
  "topicsCovered": ["topic1", "topic2"]
}}

REMEMBER: Complete ALL questions. Output valid, complete JSON only."""


def build_concept_extraction_prompt(content: str) -> str:
    return f"""Analyze the following content and extract the main concepts, topics, and key terms.

Content: {content}

Provide:
1. Main topics (3-5)
2. Key concepts (5-10)
3. Important terms and definitions

Format as JSON:
{{
  "topics": ["topic1", "topic2"],
  "concepts": ["concept1", "concept2"],
  "terms": [
    {{"term": "term1", "definition": "definition1"}}
  ]
}}"""


RETRY_PROMPT_ADDENDUM = """

IMPORTANT: The previous response was incomplete or malformed JSON.
Return fewer items if necessary, but make sure the JSON is complete and valid."""
