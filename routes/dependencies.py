"""
Service wiring for the routers.

Each provider builds its service once on first use. Tests replace them
through `app.dependency_overrides`.
"""

import os
from functools import lru_cache

from clients.pinecone_client import PineconeVectorStore
from clients.s3_client import S3BlobStore
from services.consistency_service import ConsistencyService
from services.deletion_service import DeletionService
from services.notifications import build_notifier
from services.pipeline import ContentPipeline
from services.quiz_service import QuizService
from services.quota_service import QuotaService
from services.resilience import ResilientGenerator
from services.scheduled_jobs import ScheduledJobs
from services.spaced_repetition import FlashcardService
from services.study_generation import StudyGenerator
from services.transcripts import TranscriptService
from utils.storage import SupabaseStore


@lru_cache
def get_store() -> SupabaseStore:
    return SupabaseStore()


@lru_cache
def get_vector_store() -> PineconeVectorStore:
    return PineconeVectorStore()


@lru_cache
def get_blob_store() -> S3BlobStore:
    return S3BlobStore()


@lru_cache
def get_quota_service() -> QuotaService:
    return QuotaService()


@lru_cache
def get_study_generator() -> StudyGenerator:
    return StudyGenerator(ResilientGenerator(quota_service=get_quota_service()))


@lru_cache
def get_quiz_service() -> QuizService:
    return QuizService(get_store(), get_study_generator())


@lru_cache
def get_flashcard_service() -> FlashcardService:
    return FlashcardService(get_store())


@lru_cache
def get_pipeline() -> ContentPipeline:
    return ContentPipeline(
        store=get_store(),
        generator=get_study_generator(),
        transcripts=TranscriptService(use_proxy=os.getenv("USE_TRANSCRIPT_PROXY", "false").lower() == "true"),
        vector_store=get_vector_store(),
        quiz_service=get_quiz_service(),
        notifier=build_notifier(),
    )


@lru_cache
def get_deletion_service() -> DeletionService:
    return DeletionService(get_store(), get_vector_store(), get_blob_store())


@lru_cache
def get_consistency_service() -> ConsistencyService:
    return ConsistencyService(get_store(), get_vector_store())


@lru_cache
def get_scheduled_jobs() -> ScheduledJobs:
    return ScheduledJobs(get_store(), get_pipeline(), get_quota_service(), get_deletion_service())
