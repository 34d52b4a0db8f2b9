import pytest

from models.content_models import Content, ContentMetadata, ContentType
from services.transcripts import (
    TranscriptService,
    extract_video_id,
    segments_from_entries,
    segments_from_text,
)
from utils.exceptions import TranscriptError


@pytest.mark.parametrize("url,expected", [
    ("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42", "dQw4w9WgXcQ"),
    ("https://youtu.be/dQw4w9WgXcQ?si=abc", "dQw4w9WgXcQ"),
    ("https://www.youtube.com/embed/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
    ("dQw4w9WgXcQ", "dQw4w9WgXcQ"),
    ("https://example.com/video", None),
])
def test_extract_video_id(url, expected):
    assert extract_video_id(url) == expected


def test_entries_are_converted_to_milliseconds():
    segments = segments_from_entries([
        {"text": "Light hits\nthe leaf", "start": 1.25, "duration": 2.0},
        {"text": "   ", "start": 3.25, "duration": 1.0},
    ])
    assert len(segments) == 1
    assert segments[0].text == "Light hits the leaf"
    assert (segments[0].start_time, segments[0].end_time) == (1250, 3250)


def test_text_segments_follow_reading_pace():
    text = "One two three. Four five six! Seven eight nine? Ten eleven twelve."
    segments = segments_from_text(text)

    assert [s.text for s in segments] == [
        "One two three. Four five six! Seven eight nine?",
        "Ten eleven twelve.",
    ]
    # 9 words at 150 wpm
    assert segments[0].end_time == 3600
    assert segments[1].start_time == segments[0].end_time


async def test_fetch_for_text_content():
    content = Content(id="c", user_id="u", type=ContentType.TEXT, source_text="Plants absorb light. They make sugar.")

    transcript = await TranscriptService().fetch(content)

    assert transcript.content_id == "c"
    assert transcript.full_text == "Plants absorb light. They make sugar."
    assert transcript.language == "en"


async def test_fetch_rejects_empty_text():
    content = Content(id="c", user_id="u", type=ContentType.DOCUMENT, source_text="   ")
    with pytest.raises(TranscriptError):
        await TranscriptService().fetch(content)


async def test_fetch_youtube_uses_video_id(monkeypatch):
    service = TranscriptService()
    monkeypatch.setattr(service, "_fetch_youtube", lambda video_id: [
        {"text": f"intro for {video_id}", "start": 0.0, "duration": 4.0},
    ])
    content = Content(
        id="c",
        user_id="u",
        type=ContentType.YOUTUBE,
        source_url="https://youtu.be/dQw4w9WgXcQ",
        metadata=ContentMetadata(duration_seconds=212),
    )

    transcript = await service.fetch(content)

    assert transcript.full_text == "intro for dQw4w9WgXcQ"
    assert transcript.duration_seconds == 212


async def test_fetch_youtube_rejects_bad_url():
    content = Content(id="c", user_id="u", type=ContentType.YOUTUBE, source_url="https://example.com/video")
    with pytest.raises(TranscriptError):
        await TranscriptService().fetch(content)
