"""
Pydantic models for content items and their processing stages.
The stage record is serialized with camelCase keys; UI and admin tooling
read that exact shape.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageName(str, Enum):
    TRANSCRIPTION = "transcription"
    VECTORIZATION = "vectorization"
    SUMMARIZATION = "summarization"
    FLASHCARD_GENERATION = "flashcardGeneration"
    QUIZ_GENERATION = "quizGeneration"


STAGE_ORDER: List[StageName] = [
    StageName.TRANSCRIPTION,
    StageName.VECTORIZATION,
    StageName.SUMMARIZATION,
    StageName.FLASHCARD_GENERATION,
    StageName.QUIZ_GENERATION,
]

# Failure here degrades the content but does not fail it
SOFT_STAGES = {StageName.QUIZ_GENERATION}


class StageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class ContentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class ContentType(str, Enum):
    YOUTUBE = "youtube"
    DOCUMENT = "document"
    TEXT = "text"


class StageRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: StageStatus = StageStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    error: Optional[str] = None
    retry_count: Optional[int] = Field(default=None, alias="retryCount")


def initial_stages() -> Dict[StageName, StageRecord]:
    return {stage: StageRecord() for stage in STAGE_ORDER}


def dump_stages(stages: Dict[StageName, StageRecord]) -> Dict[str, Dict[str, Any]]:
    """Serialize stages into the persisted camelCase shape, in stage order."""
    return {
        stage.value: stages[stage].model_dump(by_alias=True, exclude_none=True, mode="json")
        for stage in STAGE_ORDER
    }


def load_stages(raw: Optional[Dict[str, Any]]) -> Dict[StageName, StageRecord]:
    stages = initial_stages()
    for key, value in (raw or {}).items():
        stages[StageName(key)] = StageRecord.model_validate(value)
    return stages


def derive_content_status(stages: Dict[StageName, StageRecord]) -> ContentStatus:
    """Aggregate status implied by the stage records."""
    statuses = [stages[stage].status for stage in STAGE_ORDER]

    if StageStatus.PAUSED in statuses:
        return ContentStatus.PAUSED
    for stage in STAGE_ORDER:
        if stages[stage].status == StageStatus.FAILED and stage not in SOFT_STAGES:
            return ContentStatus.FAILED

    hard_done = all(
        stages[stage].status == StageStatus.COMPLETED
        for stage in STAGE_ORDER
        if stage not in SOFT_STAGES
    )
    soft_done = all(
        stages[stage].status in (StageStatus.COMPLETED, StageStatus.FAILED)
        for stage in SOFT_STAGES
    )
    if hard_done and soft_done:
        return ContentStatus.COMPLETED
    if all(status == StageStatus.PENDING for status in statuses):
        return ContentStatus.PENDING
    return ContentStatus.PROCESSING


class QuotaPauseInfo(BaseModel):
    """Recovery details persisted on quota-paused content"""
    quota_metric: Optional[str] = None
    quota_limit: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    estimated_recovery_time: Optional[datetime] = None
    suggested_action: Optional[str] = None


class ContentMetadata(BaseModel):
    duration_seconds: Optional[int] = None
    video_id: Optional[str] = None
    error: Optional[str] = None
    paused_reason: Optional[str] = None
    paused_at: Optional[datetime] = None
    paused_stage: Optional[StageName] = None
    quota_info: Optional[QuotaPauseInfo] = None


class Content(BaseModel):
    """Aggregate root for an ingested item of study material"""
    id: str
    user_id: str
    type: ContentType
    title: str = ""
    source_url: Optional[str] = None
    source_text: Optional[str] = None
    blob_key: Optional[str] = None
    status: ContentStatus = ContentStatus.PENDING
    stages: Dict[StageName, StageRecord] = Field(default_factory=initial_stages)
    metadata: ContentMetadata = Field(default_factory=ContentMetadata)
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_row(self) -> Dict[str, Any]:
        """Row shape for the primary store"""
        row = self.model_dump(mode="json", exclude={"stages"})
        row["processing_stages"] = dump_stages(self.stages)
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Content":
        data = dict(row)
        data["stages"] = load_stages(data.pop("processing_stages", None))
        return cls.model_validate(data)


class TranscriptSegment(BaseModel):
    text: str
    start_time: int = 0
    end_time: int = 0


class Transcript(BaseModel):
    id: Optional[str] = None
    content_id: str
    user_id: str
    full_text: str
    segments: List[TranscriptSegment] = []
    language: str = "en"
    duration_seconds: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class SummaryLevel(str, Enum):
    QUICK = "quick"
    BRIEF = "brief"
    DETAILED = "detailed"


class Summary(BaseModel):
    id: Optional[str] = None
    content_id: str
    user_id: str
    level: SummaryLevel
    text: str
    word_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
