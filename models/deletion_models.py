"""
Models for the deletion saga: per-phase results, bulk summaries and the
persisted saga checkpoint.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict
from datetime import datetime
from enum import Enum

from models.content_models import utcnow


class DeletePhase(str, Enum):
    VALIDATION = "validation"
    VECTOR = "vector"
    BLOB = "blob"
    PRIMARY = "primary"


class PhaseResult(BaseModel):
    success: bool = False
    deleted: Optional[bool] = None
    error: Optional[str] = None
    deleted_counts: Optional[Dict[str, int]] = None


def _empty_phases() -> Dict[DeletePhase, PhaseResult]:
    return {phase: PhaseResult() for phase in DeletePhase}


class DeleteOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INCONSISTENT = "inconsistent"


class ContentDeleteResult(BaseModel):
    content_id: str
    success: bool = False
    outcome: DeleteOutcome = DeleteOutcome.FAILED
    message: str = ""
    phases: Dict[DeletePhase, PhaseResult] = Field(default_factory=_empty_phases)
    timestamp: datetime = Field(default_factory=utcnow)


class BulkDeleteSummary(BaseModel):
    vector_deleted_count: int = 0
    vector_failed_count: int = 0
    primary_deleted_count: int = 0
    primary_failed_count: int = 0
    blob_deleted_count: int = 0
    blob_failed_count: int = 0


class BulkDeleteResult(BaseModel):
    success: bool
    total_requested: int
    total_succeeded: int
    total_failed: int
    total_inconsistent: int
    results: List[ContentDeleteResult]
    summary: BulkDeleteSummary
    processing_time_ms: int


class BulkDeleteRequest(BaseModel):
    user_id: str
    content_ids: List[str] = Field(..., min_length=1, max_length=100)
    permanent: bool = False


class SagaStatus(str, Enum):
    STARTED = "started"
    VECTORS_DELETED = "vectors_deleted"
    BLOB_DELETED = "blob_deleted"
    COMPLETED = "completed"
    ABORTED = "aborted"
    INCONSISTENT = "inconsistent"
    MANUAL = "manual"


# Checkpoints a reconciliation sweep still has work for
OPEN_SAGA_STATUSES = [
    SagaStatus.STARTED,
    SagaStatus.VECTORS_DELETED,
    SagaStatus.BLOB_DELETED,
    SagaStatus.INCONSISTENT,
]


class DeletionSaga(BaseModel):
    id: Optional[str] = None
    content_id: str
    user_id: str
    status: SagaStatus = SagaStatus.STARTED
    blob_key: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
