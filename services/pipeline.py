"""
Content processing pipeline.

Drives a content item through five ordered stages:

    transcription -> vectorization -> summarization
        -> flashcardGeneration -> quizGeneration

Every stage transition is persisted before the next step runs, so a crash
or a quota pause leaves an accurate record to resume from. A quota error
pauses the pipeline (stage and content `paused`, remaining stages
`pending`); any other error fails the stage and the content. Quiz
generation is soft: its failure is recorded but the content completes.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from clients.generator_client import embed_texts
from models.content_models import (
    STAGE_ORDER,
    SOFT_STAGES,
    Content,
    ContentStatus,
    QuotaPauseInfo,
    StageName,
    StageRecord,
    StageStatus,
    Summary,
    SummaryLevel,
    Transcript,
    derive_content_status,
    dump_stages,
    initial_stages,
    utcnow,
)
from models.study_models import DIFFICULTY_ORDER, Flashcard, SourceSegment
from services.chunking import TranscriptChunker
from services.notifications import LoggingNotifier, NotificationEvent, NotificationType
from services.quiz_service import QuizService
from services.study_generation import StudyGenerator
from services.transcripts import TranscriptService
from utils.exceptions import (
    ConflictError,
    GenerationError,
    NotFoundError,
    QuotaExceededError,
    StudyForgeError,
    ValidationError,
)
from utils.settings import DEFAULT_FLASHCARD_COUNT, QUIZ_ATTEMPTS_PER_DIFFICULTY

logger = logging.getLogger(__name__)

QUOTA_PAUSE_REASON = "quota_exceeded"

SUMMARY_PROGRESS = {
    SummaryLevel.QUICK: 20,
    SummaryLevel.BRIEF: 45,
    SummaryLevel.DETAILED: 70,
}


class ContentPipeline:
    def __init__(
        self,
        store,
        generator: StudyGenerator,
        transcripts: TranscriptService,
        vector_store,
        quiz_service: QuizService,
        notifier=None,
        embed: Callable[[List[str]], Awaitable[List[List[float]]]] = embed_texts,
        chunker: Optional[TranscriptChunker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        flashcard_count: int = DEFAULT_FLASHCARD_COUNT,
        quiz_attempts: int = QUIZ_ATTEMPTS_PER_DIFFICULTY,
    ):
        self.store = store
        self.generator = generator
        self.transcripts = transcripts
        self.vector_store = vector_store
        self.quiz_service = quiz_service
        self.notifier = notifier or LoggingNotifier()
        self.embed = embed
        self.chunker = chunker or TranscriptChunker()
        self._sleep = sleep
        self.flashcard_count = flashcard_count
        self.quiz_attempts = quiz_attempts
        self._tasks: Set[asyncio.Task] = set()
        self._active: Set[str] = set()
        self._handlers = {
            StageName.TRANSCRIPTION: self._run_transcription,
            StageName.VECTORIZATION: self._run_vectorization,
            StageName.SUMMARIZATION: self._run_summarization,
            StageName.FLASHCARD_GENERATION: self._run_flashcards,
            StageName.QUIZ_GENERATION: self._run_quizzes,
        }

    # ── Entry points ──────────────────────────────────────────────────────

    async def process(self, content_id: str) -> Content:
        self._claim(content_id)
        try:
            return await self._process(content_id)
        finally:
            self._active.discard(content_id)

    async def resume(self, content_id: str, from_stage: Optional[StageName] = None) -> Content:
        self._claim(content_id)
        try:
            return await self._resume(content_id, from_stage)
        finally:
            self._active.discard(content_id)

    def start_processing(self, content_id: str, resume: bool = False, from_stage: Optional[StageName] = None) -> asyncio.Task:
        """Schedule process/resume as a background task. Raises ConflictError if the item is already running."""
        self._claim(content_id)
        coro = self._resume(content_id, from_stage) if resume else self._process(content_id)
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._log_background_result(content_id, t))
        return task

    def _claim(self, content_id: str) -> None:
        # One run per content item at a time
        if content_id in self._active:
            raise ConflictError(
                f"Content {content_id} is already being processed",
                error_code="PROCESSING_IN_PROGRESS",
                context={"content_id": content_id},
            )
        self._active.add(content_id)

    async def _process(self, content_id: str) -> Content:
        content = await self._load(content_id)
        logger.info(f"[pipeline] Starting processing for content {content_id}")

        content.stages = initial_stages()
        content.status = ContentStatus.PROCESSING
        self._clear_pause(content)
        content.metadata.error = None
        await self.store.save_content(content)

        return await self._run_from(content, STAGE_ORDER[0])

    async def _resume(self, content_id: str, from_stage: Optional[StageName] = None) -> Content:
        content = await self._load(content_id)

        if all(content.stages[s].status == StageStatus.COMPLETED for s in STAGE_ORDER):
            logger.info(f"[pipeline] Content {content_id} already fully processed, nothing to resume")
            return content

        if from_stage is not None:
            entry = StageName(from_stage)
            self._check_preconditions(content, entry)
        else:
            entry = next(s for s in STAGE_ORDER if content.stages[s].status != StageStatus.COMPLETED)

        for stage in STAGE_ORDER[STAGE_ORDER.index(entry):]:
            record = content.stages[stage]
            content.stages[stage] = StageRecord(status=StageStatus.PENDING, retry_count=record.retry_count)

        was_paused = content.status == ContentStatus.PAUSED
        self._clear_pause(content)
        content.metadata.error = None
        content.status = ContentStatus.PROCESSING
        await self.store.save_content(content)

        logger.info(f"[pipeline] Resuming content {content_id} from {entry.value}")
        if was_paused:
            self._notify(content, entry, 0, f"Processing resumed from {entry.value}", NotificationType.RESUMED)
        return await self._run_from(content, entry)

    def _log_background_result(self, content_id: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._active.discard(content_id)
        if task.cancelled():
            logger.warning(f"[pipeline] Background processing cancelled for {content_id}")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[pipeline] Background processing crashed for {content_id}: {error}")

    async def get_status(self, content_id: str) -> Dict[str, Any]:
        content = await self._load(content_id)
        stages = dump_stages(content.stages)
        status: Dict[str, Any] = {
            "content_id": content.id,
            "status": content.status.value,
            "stages": stages,
            "progress": round(sum(content.stages[s].progress for s in STAGE_ORDER) / len(STAGE_ORDER)),
        }
        if content.status == ContentStatus.PAUSED:
            info = content.metadata.quota_info
            status["paused"] = {
                "reason": content.metadata.paused_reason,
                "paused_at": content.metadata.paused_at.isoformat() if content.metadata.paused_at else None,
                "stage": content.metadata.paused_stage.value if content.metadata.paused_stage else None,
                "estimated_recovery_time": (
                    info.estimated_recovery_time.isoformat() if info and info.estimated_recovery_time else None
                ),
                "suggested_action": info.suggested_action if info else None,
            }
        if content.status == ContentStatus.FAILED:
            status["error"] = content.metadata.error
        return status

    # ── State machine ─────────────────────────────────────────────────────

    async def _load(self, content_id: str) -> Content:
        content = await self.store.get_content(content_id)
        if content is None or content.is_deleted:
            raise NotFoundError(f"Content {content_id} not found")
        return content

    def _check_preconditions(self, content: Content, stage: StageName) -> None:
        for prior in STAGE_ORDER[:STAGE_ORDER.index(stage)]:
            if content.stages[prior].status != StageStatus.COMPLETED:
                raise ValidationError(
                    f"Cannot run {stage.value}: {prior.value} is {content.stages[prior].status.value}",
                    error_code="STAGE_PRECONDITION_FAILED",
                    context={"content_id": content.id, "stage": stage.value},
                )

    async def _run_from(self, content: Content, entry: StageName) -> Content:
        for stage in STAGE_ORDER[STAGE_ORDER.index(entry):]:
            self._check_preconditions(content, stage)
            try:
                await self._start_stage(content, stage)
                await self._handlers[stage](content)
                await self._complete_stage(content, stage)
            except QuotaExceededError as e:
                await self._pause(content, stage, e)
                return content
            except Exception as e:
                if stage in SOFT_STAGES:
                    await self._fail_soft_stage(content, stage, e)
                    continue
                await self._fail(content, stage, e)
                return content

        content.status = derive_content_status(content.stages)
        await self.store.save_content(content)
        logger.info(f"[pipeline] Content {content.id} finished with status {content.status.value}")
        self._notify(content, None, 100, "Processing complete", NotificationType.COMPLETED)
        return content

    async def _start_stage(self, content: Content, stage: StageName) -> None:
        record = content.stages[stage]
        record.status = StageStatus.PROCESSING
        record.progress = 10
        record.started_at = utcnow()
        record.completed_at = None
        record.error = None
        await self.store.save_content(content)
        logger.info(f"[pipeline] {content.id}: {stage.value} started")
        self._notify(content, stage, 10, f"{stage.value} started")

    async def _progress(self, content: Content, stage: StageName, progress: int, message: str = "") -> None:
        content.stages[stage].progress = progress
        await self.store.save_content(content)
        self._notify(content, stage, progress, message)

    async def _complete_stage(self, content: Content, stage: StageName) -> None:
        record = content.stages[stage]
        record.status = StageStatus.COMPLETED
        record.progress = 100
        record.completed_at = utcnow()
        await self.store.save_content(content)
        logger.info(f"[pipeline] {content.id}: {stage.value} completed")
        self._notify(content, stage, 100, f"{stage.value} completed")

    async def _pause(self, content: Content, stage: StageName, error: QuotaExceededError) -> None:
        now = utcnow()
        info = error.quota_info
        record = content.stages[stage]
        record.status = StageStatus.PAUSED
        record.error = error.message

        content.status = ContentStatus.PAUSED
        content.metadata.paused_reason = QUOTA_PAUSE_REASON
        content.metadata.paused_at = now
        content.metadata.paused_stage = stage
        content.metadata.quota_info = QuotaPauseInfo(
            quota_metric=info.quota_metric,
            quota_limit=info.quota_limit,
            retry_after_seconds=info.retry_after_seconds,
            estimated_recovery_time=info.estimated_recovery_time,
            suggested_action=info.suggested_action,
        )
        await self.store.save_content(content)

        recovery = info.estimated_recovery_time.isoformat() if info.estimated_recovery_time else "unknown"
        logger.warning(f"[pipeline] {content.id}: quota exceeded during {stage.value}, paused until {recovery}")
        self._notify(
            content,
            stage,
            record.progress,
            f"Processing paused: {info.suggested_action}",
            NotificationType.PAUSED,
        )

    async def _fail(self, content: Content, stage: StageName, error: Exception) -> None:
        message = error.message if isinstance(error, StudyForgeError) else str(error)
        record = content.stages[stage]
        record.status = StageStatus.FAILED
        record.error = message
        record.retry_count = (record.retry_count or 0) + 1

        content.status = ContentStatus.FAILED
        content.metadata.error = f"{stage.value}: {message}"
        logger.error(f"[pipeline] {content.id}: {stage.value} failed: {message}")
        try:
            await self.store.save_content(content)
        except Exception as e:
            logger.error(f"[pipeline] {content.id}: could not record failure of {stage.value}: {e}")
            raise
        self._notify(content, stage, record.progress, f"{stage.value} failed: {message}", NotificationType.FAILED)

    async def _fail_soft_stage(self, content: Content, stage: StageName, error: Exception) -> None:
        message = error.message if isinstance(error, StudyForgeError) else str(error)
        record = content.stages[stage]
        record.status = StageStatus.FAILED
        record.error = message
        record.retry_count = (record.retry_count or 0) + 1
        await self.store.save_content(content)
        logger.warning(f"[pipeline] {content.id}: {stage.value} failed (non-fatal): {message}")

    @staticmethod
    def _clear_pause(content: Content) -> None:
        content.metadata.paused_reason = None
        content.metadata.paused_at = None
        content.metadata.paused_stage = None
        content.metadata.quota_info = None

    def _notify(
        self,
        content: Content,
        stage: Optional[StageName],
        progress: int,
        message: str,
        event_type: NotificationType = NotificationType.PROGRESS,
    ) -> None:
        self.notifier.notify(NotificationEvent(
            content_id=content.id,
            user_id=content.user_id,
            stage=stage.value if stage else None,
            progress=progress,
            message=message,
            type=event_type,
        ))

    # ── Stage work ────────────────────────────────────────────────────────

    async def _transcript(self, content: Content) -> Transcript:
        transcript = await self.store.get_transcript(content.id)
        if transcript is None:
            raise ValidationError(f"Transcript missing for content {content.id}", error_code="TRANSCRIPT_NOT_READY")
        return transcript

    async def _run_transcription(self, content: Content) -> None:
        transcript = await self.transcripts.fetch(content)
        await self.store.save_transcript(transcript)
        content.metadata.duration_seconds = transcript.duration_seconds
        logger.info(f"[pipeline] {content.id}: transcript with {len(transcript.segments)} segments")

    async def _run_vectorization(self, content: Content) -> None:
        stage = StageName.VECTORIZATION
        transcript = await self._transcript(content)
        chunks = self.chunker.chunk_transcript(transcript)
        await self._progress(content, stage, 30, f"Split into {len(chunks)} chunks")

        embeddings = await self.embed([c["text"] for c in chunks])
        await self._progress(content, stage, 50, "Embeddings generated")

        count = await self.vector_store.upsert(content.id, content.user_id, embeddings, chunks)
        await self._progress(content, stage, 90, f"Indexed {count} vectors")

    async def _run_summarization(self, content: Content) -> None:
        stage = StageName.SUMMARIZATION
        transcript = await self._transcript(content)
        summaries = []
        for level in (SummaryLevel.QUICK, SummaryLevel.BRIEF, SummaryLevel.DETAILED):
            generated = await self.generator.generate_summary(transcript, level)
            summaries.append(Summary(
                content_id=content.id,
                user_id=content.user_id,
                level=level,
                text=generated["text"],
                word_count=generated["word_count"],
            ))
            await self._progress(content, stage, SUMMARY_PROGRESS[level], f"{level.value} summary ready")
        await self.store.replace_summaries(content.id, summaries)

    async def _run_flashcards(self, content: Content) -> None:
        stage = StageName.FLASHCARD_GENERATION
        transcript = await self._transcript(content)
        cards = await self.generator.generate_flashcards(transcript, self.flashcard_count)
        await self._progress(content, stage, 30, f"Generated {len(cards)} flashcards")

        flashcards = [
            Flashcard(
                content_id=content.id,
                user_id=content.user_id,
                front=card["front"],
                back=card["back"],
                type=card["type"],
                difficulty=card["difficulty"],
                tags=card["tags"],
                source_segment=SourceSegment(**card["source_segment"]) if card.get("source_segment") else None,
            )
            for card in cards
        ]
        await self.store.replace_flashcards(content.id, flashcards)
        await self._progress(content, stage, 80, "Flashcards saved")

    async def _run_quizzes(self, content: Content) -> None:
        stage = StageName.QUIZ_GENERATION
        created = 0
        last_error: Optional[Exception] = None

        for index, difficulty in enumerate(DIFFICULTY_ORDER):
            for attempt in range(self.quiz_attempts):
                try:
                    quiz = await self.quiz_service.generate_quiz(content.id, content.user_id, difficulty)
                except QuotaExceededError:
                    raise
                except StudyForgeError as e:
                    last_error = e
                    logger.warning(
                        f"[quiz] {difficulty.value} quiz failed for {content.id} "
                        f"(attempt {attempt + 1}/{self.quiz_attempts}): {e.message}"
                    )
                    if attempt < self.quiz_attempts - 1:
                        await self._sleep(2 ** (attempt + 1))
                    continue
                created += 1
                logger.info(f"[quiz] {difficulty.value} quiz {quiz.id} ready for {content.id}")
                break
            await self._progress(content, stage, 10 + 30 * (index + 1), f"{difficulty.value} quiz processed")

        if created == 0:
            raise GenerationError(
                f"Quiz generation failed for every difficulty: {last_error}",
                context={"content_id": content.id},
            )
