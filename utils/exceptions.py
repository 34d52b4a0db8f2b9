"""
Unified exception hierarchy for StudyForge.

All domain exceptions inherit from StudyForgeError and carry:
- error_code: machine-readable string (e.g. "CONTENT_NOT_FOUND")
- status_code: HTTP status code
- message: human-readable description
- context: optional structured metadata dict

Provider failures are classified into the GenerationError subclasses once,
inside the provider adapters. Everything downstream dispatches on type.
"""

from typing import Optional, Dict, Any, List, TYPE_CHECKING

if TYPE_CHECKING:
    from utils.quota import QuotaInfo


class StudyForgeError(Exception):
    """Base exception for all StudyForge domain errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)


class ValidationError(StudyForgeError):
    """400-level validation / bad-request errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_REQUEST",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=400, context=context)


class NotFoundError(StudyForgeError):
    """404 resource-not-found errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONTENT_NOT_FOUND",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=404, context=context)


class ConflictError(StudyForgeError):
    """409 state conflicts (e.g. resubmitting a completed attempt)."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFLICT",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=409, context=context)


class GenerationError(StudyForgeError):
    """500-level generation failures."""

    def __init__(
        self,
        message: str,
        error_code: str = "GENERATION_FAILED",
        context: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message, error_code=error_code, status_code=status_code, context=context)


class TransientGenerationError(GenerationError):
    """Timeout, overload or plain rate limiting. Retried on the same generator."""

    def __init__(self, message: str, generator_id: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self.generator_id = generator_id
        ctx = {"generator_id": generator_id}
        if context:
            ctx.update(context)
        super().__init__(message, error_code="GENERATOR_TRANSIENT", context=ctx, status_code=503)


class ModelUnavailableError(GenerationError):
    """Model not found or unsupported. Advances the fallback chain."""

    def __init__(self, message: str, generator_id: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self.generator_id = generator_id
        ctx = {"generator_id": generator_id}
        if context:
            ctx.update(context)
        super().__init__(message, error_code="MODEL_UNAVAILABLE", context=ctx, status_code=503)


class QuotaExceededError(GenerationError):
    """Provider quota exhausted. Per-minute quotas are retryable, daily ones are not."""

    def __init__(self, quota_info: "QuotaInfo", generator_id: Optional[str] = None):
        self.quota_info = quota_info
        self.generator_id = generator_id
        super().__init__(
            quota_info.user_message(),
            error_code="QUOTA_EXCEEDED",
            context={"generator_id": generator_id, **quota_info.to_dict()},
            status_code=429,
        )

    @property
    def retryable(self) -> bool:
        return self.quota_info.retryable

    @property
    def estimated_recovery_time(self):
        return self.quota_info.estimated_recovery_time


class AllGeneratorsFailedError(GenerationError):
    """Every generator in the fallback chain was exhausted."""

    def __init__(self, generators_tried: List[str], last_error: Optional[Exception]):
        self.generators_tried = generators_tried
        self.last_error = last_error
        super().__init__(
            f"All generators failed ({', '.join(generators_tried)}). Last error: {last_error}",
            error_code="ALL_GENERATORS_FAILED",
            context={"generators_tried": generators_tried, "last_error": str(last_error)},
        )


class OutputParseError(GenerationError):
    """Generated text could not be recovered into any usable record."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="OUTPUT_PARSE_FAILED", context=context)


class ContentValidationError(GenerationError):
    """Generated content failed schema or completeness checks."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONTENT_VALIDATION_FAILED", context=context)


class StorageError(StudyForgeError):
    """500-level database / storage failures."""

    def __init__(
        self,
        message: str,
        error_code: str = "STORAGE_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=500, context=context)


class ConsistencyError(StudyForgeError):
    """Cross-store partial failure. Never auto-healed in the request path."""

    def __init__(self, content_id: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.content_id = content_id
        ctx = {"content_id": content_id}
        if context:
            ctx.update(context)
        super().__init__(
            f"INCONSISTENT STATE for content {content_id}: {message}",
            error_code="INCONSISTENT_STATE",
            status_code=500,
            context=ctx,
        )


class TranscriptError(StudyForgeError):
    """Transcript could not be obtained for a content item."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="TRANSCRIPT_UNAVAILABLE", status_code=422, context=context)
