import os
import re
import asyncio
import logging
from typing import Any, Dict, List, Optional

from youtube_transcript_api import YouTubeTranscriptApi
from youtube_transcript_api.proxies import WebshareProxyConfig
from youtube_transcript_api._errors import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
)

from models.content_models import Content, ContentType, Transcript, TranscriptSegment
from utils.exceptions import TranscriptError

logger = logging.getLogger(__name__)

# Words per minute used to give documents and plain text a pseudo timeline
READING_WPM = 150
SENTENCES_PER_SEGMENT = 3


def extract_video_id(video_url: str) -> Optional[str]:
    """
    Extract video ID from various YouTube URL formats.

    Args:
        video_url: YouTube video URL or bare video ID

    Returns:
        Video ID if found, None otherwise
    """
    if not video_url:
        return None
    if "youtu.be/" in video_url:
        return video_url.split("youtu.be/")[1].split("?")[0].split("&")[0]
    if "youtube.com/watch?v=" in video_url:
        return video_url.split("watch?v=")[1].split("&")[0]
    if "youtube.com/v/" in video_url:
        return video_url.split("/v/")[1].split("?")[0].split("&")[0]
    if "youtube.com/embed/" in video_url:
        return video_url.split("/embed/")[1].split("?")[0].split("&")[0]
    if len(video_url) == 11:
        return video_url
    logger.warning(f"Unrecognized YouTube URL format: {video_url}")
    return None


def segments_from_entries(entries: List[Dict[str, Any]]) -> List[TranscriptSegment]:
    """youtube-transcript-api entries (seconds) to millisecond segments."""
    segments = []
    for entry in entries:
        text = (entry.get("text") or "").replace("\n", " ").strip()
        if not text:
            continue
        start = int(round(float(entry.get("start", 0)) * 1000))
        end = start + int(round(float(entry.get("duration", 0)) * 1000))
        segments.append(TranscriptSegment(text=text, start_time=start, end_time=end))
    return segments


def segments_from_text(text: str) -> List[TranscriptSegment]:
    """Split plain text into sentence groups with reading-time offsets."""
    sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", text) if s.strip()]
    ms_per_word = 60000 / READING_WPM
    segments = []
    position = 0
    for i in range(0, len(sentences), SENTENCES_PER_SEGMENT):
        chunk = " ".join(sentences[i:i + SENTENCES_PER_SEGMENT])
        duration = max(1, int(len(chunk.split()) * ms_per_word))
        segments.append(TranscriptSegment(text=chunk, start_time=position, end_time=position + duration))
        position += duration
    return segments


class TranscriptService:
    """
    Produces a Transcript for a content item.
    YouTube videos go through youtube-transcript-api (optionally behind a
    WebShare proxy); documents and text are segmented locally.
    """

    def __init__(self, use_proxy: bool = False, languages: Optional[List[str]] = None):
        self.languages = languages or ["en"]
        proxy_username = os.getenv("WEBSHARE_PROXY_USERNAME")
        proxy_password = os.getenv("WEBSHARE_PROXY_PASSWORD")
        if use_proxy and proxy_username and proxy_password:
            self.api = YouTubeTranscriptApi(
                proxy_config=WebshareProxyConfig(
                    proxy_username=proxy_username,
                    proxy_password=proxy_password,
                )
            )
            logger.info("TranscriptService initialized with WebShare proxy")
        else:
            if use_proxy:
                logger.error("WebShare proxy requested but WEBSHARE_PROXY_USERNAME/PASSWORD not set")
            self.api = YouTubeTranscriptApi()

    def _fetch_youtube(self, video_id: str) -> List[Dict[str, Any]]:
        try:
            return self.api.fetch(video_id, languages=self.languages).to_raw_data()
        except TranscriptsDisabled as e:
            raise TranscriptError(f"Transcripts are disabled for video: {video_id}") from e
        except NoTranscriptFound as e:
            raise TranscriptError(
                f"No transcript found for video: {video_id} in languages: {self.languages}"
            ) from e
        except VideoUnavailable as e:
            raise TranscriptError(f"Video is unavailable: {video_id}") from e
        except CouldNotRetrieveTranscript as e:
            raise TranscriptError(f"Could not retrieve transcript: {e}") from e

    async def fetch(self, content: Content) -> Transcript:
        if content.type == ContentType.YOUTUBE:
            video_id = content.metadata.video_id or extract_video_id(content.source_url or "")
            if not video_id:
                raise TranscriptError(f"Invalid YouTube URL or video ID: {content.source_url}")
            logger.info(f"Getting transcript for video ID: {video_id}")
            entries = await asyncio.to_thread(self._fetch_youtube, video_id)
            segments = segments_from_entries(entries)
        else:
            if not content.source_text or not content.source_text.strip():
                raise TranscriptError(f"Content {content.id} has no source text")
            segments = segments_from_text(content.source_text)

        if not segments:
            raise TranscriptError(f"Transcript for content {content.id} is empty")

        duration_seconds = content.metadata.duration_seconds or segments[-1].end_time // 1000
        return Transcript(
            content_id=content.id,
            user_id=content.user_id,
            full_text=" ".join(s.text for s in segments),
            segments=segments,
            language=self.languages[0],
            duration_seconds=duration_seconds,
        )
