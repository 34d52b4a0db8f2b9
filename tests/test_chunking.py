from models.content_models import Transcript, TranscriptSegment
from services.chunking import TranscriptChunker


def _long_transcript():
    segments = [
        TranscriptSegment(
            text=f"Segment {i} explains one step of the light reactions in plant cells.",
            start_time=i * 5000,
            end_time=(i + 1) * 5000,
        )
        for i in range(12)
    ]
    return Transcript(
        content_id="content-1",
        user_id="user-1",
        full_text=" ".join(s.text for s in segments),
        segments=segments,
        duration_seconds=60,
    )


def test_chunks_keep_segment_time_ranges():
    chunks = TranscriptChunker(chunk_size=200, chunk_overlap=20).chunk_transcript(_long_transcript())

    assert len(chunks) > 1
    assert [c["chunk_index"] for c in chunks] == list(range(len(chunks)))
    assert chunks[0]["start_time"] == 0
    assert chunks[-1]["end_time"] == 60000
    for chunk in chunks:
        assert chunk["start_time"] < chunk["end_time"]
        assert len(chunk["text"]) <= 200


def test_chunk_start_times_are_monotonic():
    chunks = TranscriptChunker(chunk_size=150, chunk_overlap=0).chunk_transcript(_long_transcript())
    starts = [c["start_time"] for c in chunks]
    assert starts == sorted(starts)


def test_plain_text_without_segments():
    transcript = Transcript(content_id="c", user_id="u", full_text="Light. " * 100, segments=[])

    chunks = TranscriptChunker(chunk_size=100, chunk_overlap=0).chunk_transcript(transcript)

    assert chunks
    assert all(c["start_time"] == 0 and c["end_time"] == 0 for c in chunks)
