from unittest.mock import AsyncMock

import pytest

from models.content_models import Content, ContentType, Transcript, TranscriptSegment
from tests.fakes import FakeBlobStore, FakeVectorStore, InMemoryStore

USER_ID = "user-1"


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep that records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def make_content(store):
    """Factory that persists a content item and returns it."""
    async def _make(content_id="content-1", user_id=USER_ID, **fields):
        content = Content(
            id=content_id,
            user_id=user_id,
            type=fields.pop("type", ContentType.TEXT),
            title=fields.pop("title", "Photosynthesis lecture"),
            source_text=fields.pop("source_text", "Plants turn light into chemical energy."),
            **fields,
        )
        await store.save_content(content)
        return content
    return _make


@pytest.fixture
def transcript_for():
    def _transcript(content_id="content-1", user_id=USER_ID, duration_seconds=1800):
        segments = [
            TranscriptSegment(text="Photosynthesis converts light energy.", start_time=0, end_time=4000),
            TranscriptSegment(text="Chlorophyll absorbs mostly blue and red light.", start_time=4000, end_time=9000),
        ]
        return Transcript(
            content_id=content_id,
            user_id=user_id,
            full_text=" ".join(s.text for s in segments),
            segments=segments,
            duration_seconds=duration_seconds,
        )
    return _transcript
