from langchain_text_splitters import RecursiveCharacterTextSplitter
from typing import Any, Dict, List
from bisect import bisect_right
import logging

import tiktoken

from models.content_models import Transcript
from utils.settings import CHUNK_SIZE, CHUNK_OVERLAP

logger = logging.getLogger(__name__)

_encoding = None


def _get_encoding():
    global _encoding
    if _encoding is None:
        _encoding = tiktoken.get_encoding("cl100k_base")
    return _encoding


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut text to at most max_tokens tokens."""
    enc = _get_encoding()
    tokens = enc.encode(text)
    if len(tokens) <= max_tokens:
        return text
    logger.info(f"Truncating prompt text from {len(tokens)} to {max_tokens} tokens")
    return enc.decode(tokens[:max_tokens])


def format_transcript(transcript: Transcript, max_tokens: int) -> str:
    """
    Render transcript segments as "[start-end] text" lines for prompts,
    truncated to the token budget. Falls back to the full text when there
    are no segments.
    """
    if not transcript.segments:
        return truncate_to_tokens(transcript.full_text, max_tokens)
    lines = [f"[{s.start_time}-{s.end_time}] {s.text}" for s in transcript.segments]
    return truncate_to_tokens("\n".join(lines), max_tokens)


class TranscriptChunker:
    """
    Splits a transcript into overlapping chunks for embedding.
    Each chunk keeps the time range of the segments it spans.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP):
        """
        Args:
            chunk_size: Maximum size of each text chunk
            chunk_overlap: Number of characters to overlap between chunks
        """
        logger.info(f"Initializing chunker with size={chunk_size}, overlap={chunk_overlap}")
        self.text_splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=["\n\n", "\n", " ", ""]
        )

    def chunk_transcript(self, transcript: Transcript) -> List[Dict[str, Any]]:
        if not transcript.segments:
            text = transcript.full_text
            return [
                {"text": chunk, "chunk_index": i, "start_time": 0, "end_time": 0}
                for i, chunk in enumerate(self.text_splitter.split_text(text))
            ]

        # Character offset of each segment in the joined text
        offsets = []
        parts = []
        position = 0
        for segment in transcript.segments:
            offsets.append(position)
            parts.append(segment.text)
            position += len(segment.text) + 1
        full_text = " ".join(parts)

        chunks = []
        cursor = 0
        for i, chunk in enumerate(self.text_splitter.split_text(full_text)):
            start = full_text.find(chunk, cursor)
            if start < 0:
                start = cursor
            end = start + len(chunk) - 1
            first = max(0, bisect_right(offsets, start) - 1)
            last = max(0, bisect_right(offsets, end) - 1)
            chunks.append({
                "text": chunk,
                "chunk_index": i,
                "start_time": transcript.segments[first].start_time,
                "end_time": transcript.segments[last].end_time,
            })
            cursor = start + 1

        logger.info(f"Split transcript into {len(chunks)} chunks")
        return chunks
