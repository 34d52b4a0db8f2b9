"""
Structured output recovery for generator responses.

Generators asked for JSON sometimes wrap it in markdown fences, stop mid-way
when they hit the token limit, or leave a string unterminated. This module
gets as much usable data out of such text as it can without guessing:

1. strip fences and leading prose
2. direct json.loads
3. close an open string, drop a dangling comma, close open brackets
4. scan for complete records inside the target array
5. nothing usable: callers either raise or fall back to an empty structure

Records that were only closed by the repair step are never returned.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from utils.exceptions import OutputParseError, ContentValidationError

logger = logging.getLogger(__name__)

RECORD_KEYS = ("questions", "flashcards", "items")
QUESTION_TYPES = {"mcq", "truefalse", "fillin", "essay"}
QUESTION_DIFFICULTIES = {"beginner", "intermediate", "advanced"}
FLASHCARD_DIFFICULTIES = {"easy", "medium", "hard"}

_TYPE_ALIASES = {
    "multiplechoice": "mcq",
    "multiple_choice": "mcq",
    "true_false": "truefalse",
    "true/false": "truefalse",
    "boolean": "truefalse",
    "fill_in": "fillin",
    "fill-in": "fillin",
    "fillintheblank": "fillin",
    "short_answer": "fillin",
}

EMPTY_CONCEPTS: Dict[str, List[Any]] = {"topics": [], "concepts": [], "terms": []}


@dataclass
class RecoveryResult:
    data: Any
    records: List[Dict[str, Any]] = field(default_factory=list)
    partial: bool = False
    strategy: str = "direct"
    warning: Optional[str] = None

    @property
    def recovered_count(self) -> int:
        return len(self.records)


def strip_fences(text: str) -> str:
    """Remove ```json fences and any prose before the first bracket."""
    cleaned = (text or "").strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s*```\s*$", "", cleaned)
    cleaned = cleaned.strip()

    if cleaned and cleaned[0] not in "[{":
        starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0]
        if starts:
            cleaned = cleaned[min(starts):]
    return cleaned


def balance_json(text: str) -> str:
    """
    Append the minimal closing characters for truncated JSON.

    Tracks string/escape state so brackets inside strings are ignored,
    closes an unterminated string, drops a trailing comma and closes
    brackets in nesting order.
    """
    stack: List[str] = []
    in_string = False
    escape = False

    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]" and stack:
            stack.pop()

    repaired = text
    if in_string:
        if escape:
            repaired = repaired[:-1]
        repaired += '"'

    repaired = repaired.rstrip()
    while repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    if repaired.endswith(":"):
        repaired += " null"

    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    return repaired + closers


def _find_array_start(text: str, array_key: Optional[str]) -> int:
    if array_key:
        match = re.search(r'"%s"\s*:\s*\[' % re.escape(array_key), text)
        if match:
            return match.end()
    index = text.find("[")
    return index + 1 if index >= 0 else -1


def scan_records(text: str, array_key: Optional[str] = None) -> Tuple[List[Dict[str, Any]], bool]:
    """
    Collect syntactically complete objects from the target array.

    Returns (records, array_closed). An object still open at end of input
    is dropped.
    """
    start_pos = _find_array_start(text, array_key)
    if start_pos < 0:
        return [], False

    records: List[Dict[str, Any]] = []
    depth = 0
    record_start: Optional[int] = None
    in_string = False
    escape = False

    for i in range(start_pos, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in "{[":
            if depth == 0 and ch == "{":
                record_start = i
            depth += 1
        elif ch in "}]":
            if depth == 0:
                if ch == "]":
                    return records, True
                continue
            depth -= 1
            if depth == 0 and record_start is not None:
                chunk = text[record_start:i + 1]
                record_start = None
                try:
                    obj = json.loads(chunk)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed record during scan: {e}")
                    continue
                if isinstance(obj, dict):
                    records.append(obj)

    return records, False


def extract_records(data: Any) -> List[Dict[str, Any]]:
    """Normalize {quiz: {...}}, {questions: [...]}, {flashcards: [...]} or a bare list."""
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        if isinstance(data.get("quiz"), (dict, list)):
            return extract_records(data["quiz"])
        for key in RECORD_KEYS:
            if isinstance(data.get(key), list):
                return [item for item in data[key] if isinstance(item, dict)]
    return []


def _replace_records(data: Any, records: List[Dict[str, Any]]) -> Any:
    if isinstance(data, list):
        return records
    if isinstance(data, dict):
        if isinstance(data.get("quiz"), (dict, list)):
            return {**data, "quiz": _replace_records(data["quiz"], records)}
        for key in RECORD_KEYS:
            if isinstance(data.get(key), list):
                return {**data, key: records}
    return data


def recover_json(text: str, array_key: Optional[str] = None) -> RecoveryResult:
    """Run the recovery steps in order and report which one produced data."""
    cleaned = strip_fences(text)

    try:
        data = json.loads(cleaned)
        return RecoveryResult(data=data, records=extract_records(data), strategy="direct")
    except json.JSONDecodeError:
        pass

    repaired = balance_json(cleaned)
    if repaired != cleaned:
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError:
            data = None
        if data is not None:
            records = extract_records(data)
            complete, _ = scan_records(cleaned, array_key)
            if len(records) > len(complete):
                # the trailing record was only closed by the repair
                records = records[:len(complete)]
                data = _replace_records(data, records)
            warning = f"Recovered {len(records)} records from truncated output"
            logger.warning(f"[recovery] {warning} (balanced)")
            return RecoveryResult(data=data, records=records, partial=True, strategy="balanced", warning=warning)

    records, closed = scan_records(cleaned, array_key)
    if records:
        warning = f"Recovered {len(records)} records from truncated output"
        logger.warning(f"[recovery] {warning} (scanned, array closed={closed})")
        return RecoveryResult(data=records, records=records, partial=True, strategy="scanned", warning=warning)

    logger.error(f"[recovery] No records recovered from: {cleaned[:300]}")
    return RecoveryResult(data=None, records=[], partial=True, strategy="empty", warning="No records recovered")


def check_completeness(recovered: int, requested: Optional[int], label: str = "records") -> None:
    """Reject recoveries below half of what was asked for."""
    if not requested:
        return
    minimum = math.ceil(requested / 2)
    if recovered < minimum:
        raise ContentValidationError(
            f"Only {recovered}/{requested} {label} recovered (minimum {minimum}). Retry with a smaller count.",
            context={"recovered": recovered, "requested": requested},
        )


# ── Quiz questions ────────────────────────────────────────────────────────────

def _segment(raw: Any) -> Optional[Dict[str, int]]:
    if not isinstance(raw, dict):
        return None
    start = raw.get("startTime", raw.get("start_time"))
    end = raw.get("endTime", raw.get("end_time"))
    if not isinstance(start, (int, float)) or not isinstance(end, (int, float)):
        return None
    return {"start_time": int(start), "end_time": int(end)}


def _question_type(raw: Any) -> str:
    value = str(raw or "").strip().lower()
    return _TYPE_ALIASES.get(value, value)


def normalize_quiz_question(question: Dict[str, Any], difficulty: str = "intermediate") -> Dict[str, Any]:
    qtype = _question_type(question.get("type"))
    level = str(question.get("difficulty") or difficulty).lower()
    if level not in QUESTION_DIFFICULTIES:
        level = difficulty
    points = question.get("points")
    if not isinstance(points, int) or not 5 <= points <= 50:
        points = 20 if qtype == "essay" else 10
    tags = question.get("tags") or []

    return {
        "question": str(question.get("question") or "").strip(),
        "type": qtype,
        "options": question.get("options"),
        "correct_answer": question.get("correctAnswer", question.get("correct_answer")),
        "explanation": question.get("explanation"),
        "difficulty": level,
        "source_segment": _segment(
            question.get("sourceSegment") or question.get("sourceTimestamp") or question.get("source_segment")
        ),
        "points": points,
        "tags": [str(t) for t in tags if t] if isinstance(tags, list) else [],
    }


def validate_quiz_question(question: Dict[str, Any]) -> bool:
    """Checks on a normalized question."""
    text = question.get("question") or ""
    if not 10 <= len(text) <= 500:
        return False
    qtype = question.get("type")
    if qtype not in QUESTION_TYPES:
        return False

    answer = question.get("correct_answer")
    if isinstance(answer, list):
        if not answer or not all(isinstance(a, str) for a in answer):
            return False
    elif not isinstance(answer, str) or not answer.strip():
        return False

    options = question.get("options")
    if options is not None and not (isinstance(options, list) and all(isinstance(o, str) for o in options)):
        return False
    if qtype == "mcq" and (not options or len(options) < 2):
        return False
    if qtype == "truefalse" and options and len(options) != 2:
        return False

    segment = question.get("source_segment")
    if segment and segment["end_time"] <= segment["start_time"]:
        return False
    return True


def parse_quiz(text: str, requested: Optional[int] = None, difficulty: str = "intermediate") -> Dict[str, Any]:
    """
    Parse a generated quiz. Raises OutputParseError when nothing is
    recoverable and ContentValidationError when too few valid questions remain.
    """
    result = recover_json(text, array_key="questions")
    if not result.records:
        raise OutputParseError("Failed to parse quiz output", context={"strategy": result.strategy})

    questions: List[Dict[str, Any]] = []
    seen = set()
    for index, raw in enumerate(result.records):
        question = normalize_quiz_question(raw, difficulty)
        if not validate_quiz_question(question):
            logger.warning(f"[recovery] Dropping invalid quiz question {index + 1}")
            continue
        key = question["question"].lower().strip()
        if key in seen:
            logger.warning(f"[recovery] Dropping duplicate quiz question {index + 1}")
            continue
        seen.add(key)
        questions.append(question)

    if not questions:
        raise ContentValidationError("Quiz output contained no valid questions")
    check_completeness(len(questions), requested, "questions")

    meta = result.data if isinstance(result.data, dict) else {}
    if isinstance(meta.get("quiz"), dict):
        meta = meta["quiz"]

    quiz = {
        "title": meta.get("title") or "",
        "description": meta.get("description"),
        "topics_covered": meta.get("topicsCovered") or meta.get("topics_covered") or [],
        "estimated_duration": meta.get("estimatedDuration") or meta.get("estimated_duration"),
        "questions": questions,
    }
    if result.partial:
        quiz["_warning"] = f"Recovered {len(questions)}/{requested or len(questions)} questions from truncated output"
        quiz["partial"] = True
    return quiz


# ── Flashcards ────────────────────────────────────────────────────────────────

def normalize_flashcard(card: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    front = str(card.get("front") or "").strip()
    back = str(card.get("back") or "").strip()
    if not front or not back:
        return None
    ctype = _question_type(card.get("type") or "fillin")
    if ctype not in QUESTION_TYPES:
        ctype = "fillin"
    level = str(card.get("difficulty") or "medium").lower()
    if level not in FLASHCARD_DIFFICULTIES:
        level = "medium"
    tags = card.get("tags") or []
    return {
        "front": front,
        "back": back,
        "type": ctype,
        "difficulty": level,
        "tags": [str(t) for t in tags if t] if isinstance(tags, list) else [],
        "source_segment": _segment(card.get("sourceTimestamp") or card.get("sourceSegment") or card.get("source_segment")),
    }


def parse_flashcards(text: str, requested: Optional[int] = None) -> List[Dict[str, Any]]:
    result = recover_json(text, array_key="flashcards")
    if not result.records:
        raise OutputParseError("Failed to parse flashcard output", context={"strategy": result.strategy})

    cards = []
    for raw in result.records:
        card = normalize_flashcard(raw)
        if card is None:
            logger.warning("[recovery] Dropping flashcard without front/back")
            continue
        cards.append(card)

    check_completeness(len(cards), requested, "flashcards")
    return cards


# ── Concept extraction ────────────────────────────────────────────────────────

def parse_concepts(text: str) -> Dict[str, List[Any]]:
    """Concept extraction degrades to an empty structure instead of failing."""
    result = recover_json(text)
    data = result.data if isinstance(result.data, dict) else None
    if not data:
        logger.warning("[recovery] Concept extraction unparseable, returning empty structure")
        return {key: [] for key in EMPTY_CONCEPTS}
    return {key: data.get(key) if isinstance(data.get(key), list) else [] for key in EMPTY_CONCEPTS}
