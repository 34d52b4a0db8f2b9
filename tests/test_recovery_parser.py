import json

import pytest

from services.recovery_parser import (
    balance_json,
    parse_concepts,
    parse_flashcards,
    parse_quiz,
    recover_json,
    strip_fences,
)
from utils.exceptions import ContentValidationError, OutputParseError


def _question(n, **overrides):
    question = {
        "question": f"What does step {n} of photosynthesis produce?",
        "type": "mcq",
        "options": ["Oxygen", "Glucose", "ATP", "Water"],
        "correctAnswer": "Oxygen",
        "difficulty": "beginner",
        "tags": ["photosynthesis"],
    }
    question.update(overrides)
    return question


def test_strip_fences_removes_markdown_and_prose():
    text = 'Here is your quiz:\n```json\n{"questions": []}\n```'
    assert strip_fences(text) == '{"questions": []}'


def test_balance_json_closes_string_and_brackets():
    repaired = balance_json('{"questions": [{"question": "What is')
    assert json.loads(repaired) == {"questions": [{"question": "What is"}]}


def test_balance_json_drops_trailing_comma():
    repaired = balance_json('{"items": [1, 2,')
    assert json.loads(repaired) == {"items": [1, 2]}


def test_direct_parse_is_not_partial():
    result = recover_json(json.dumps({"questions": [_question(1)]}))
    assert result.strategy == "direct"
    assert not result.partial
    assert result.recovered_count == 1


def test_truncated_output_keeps_only_complete_records():
    complete = ", ".join(json.dumps(_question(i)) for i in range(3))
    text = '{"title": "Light", "questions": [' + complete + ', {"question": "What does chloro'
    result = recover_json(text, array_key="questions")

    assert result.partial
    assert result.recovered_count == 3
    assert all(r["question"].startswith("What does step") for r in result.records)


def test_parse_quiz_normalizes_fields():
    text = json.dumps({
        "quiz": {
            "title": "Photosynthesis",
            "topicsCovered": ["light"],
            "questions": [
                _question(1, type="multiple_choice", sourceSegment={"startTime": 1000, "endTime": 5000}),
                _question(2, type="True/False", options=["True", "False"], correctAnswer="True", points=99),
            ],
        }
    })
    quiz = parse_quiz(text, requested=2, difficulty="beginner")

    assert quiz["title"] == "Photosynthesis"
    assert quiz["topics_covered"] == ["light"]
    first, second = quiz["questions"]
    assert first["type"] == "mcq"
    assert first["source_segment"] == {"start_time": 1000, "end_time": 5000}
    assert second["type"] == "truefalse"
    assert second["points"] == 10
    assert "partial" not in quiz


def test_parse_quiz_drops_invalid_and_duplicate_questions():
    questions = [
        _question(1),
        _question(1),
        _question(2, options=None),
        _question(3, question="Short?"),
        _question(4, sourceSegment={"startTime": 5000, "endTime": 1000}),
        _question(5),
    ]
    quiz = parse_quiz(json.dumps({"questions": questions}), requested=4)
    assert [q["question"] for q in quiz["questions"]] == [
        "What does step 1 of photosynthesis produce?",
        "What does step 5 of photosynthesis produce?",
    ]


def test_parse_quiz_marks_partial_recovery():
    complete = ", ".join(json.dumps(_question(i)) for i in range(4))
    quiz = parse_quiz('{"questions": [' + complete + ', {"question": "trunc', requested=5)
    assert quiz["partial"] is True
    assert len(quiz["questions"]) == 4
    assert "4/5" in quiz["_warning"]


def test_parse_quiz_rejects_too_few_questions():
    text = json.dumps({"questions": [_question(i) for i in range(4)]})
    with pytest.raises(ContentValidationError) as exc_info:
        parse_quiz(text, requested=10)
    assert exc_info.value.context == {"recovered": 4, "requested": 10}


def test_parse_quiz_raises_when_nothing_recoverable():
    with pytest.raises(OutputParseError):
        parse_quiz("I'm sorry, I cannot create a quiz from this.")


def test_parse_flashcards_maps_source_timestamp():
    text = json.dumps({"flashcards": [
        {"front": "Chlorophyll", "back": "Green pigment", "sourceTimestamp": {"startTime": 0, "endTime": 4000}},
        {"front": "", "back": "dropped"},
        {"front": "ATP", "back": "Energy currency", "difficulty": "extreme", "type": "fill_in"},
    ]})
    cards = parse_flashcards(text, requested=2)

    assert len(cards) == 2
    assert cards[0]["source_segment"] == {"start_time": 0, "end_time": 4000}
    assert cards[1]["difficulty"] == "medium"
    assert cards[1]["type"] == "fillin"
    assert cards[1]["source_segment"] is None


def test_parse_concepts_degrades_to_empty_structure():
    assert parse_concepts("not json at all") == {"topics": [], "concepts": [], "terms": []}
    assert parse_concepts('{"topics": ["light"], "terms": "oops"}') == {
        "topics": ["light"],
        "concepts": [],
        "terms": [],
    }
