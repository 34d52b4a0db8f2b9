"""
Generation resilience layer.

Picks a generator for a task, walks its fallback chain and retries each
generator according to the typed error it raised:

- TransientGenerationError: exponential backoff on the same generator
- QuotaExceededError (per-minute): quota backoff on the same generator
- QuotaExceededError (daily / free tier): raised immediately
- ModelUnavailableError and other GenerationErrors: next generator

Structured calls run the output through the recovery parser and retry on
validation failures, optionally with a reduced scope.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Tuple

from clients.generator_client import GeneratorClient
from models.generation_models import GenerationRequest, InvocationResult
from utils.exceptions import (
    AllGeneratorsFailedError,
    ContentValidationError,
    GenerationError,
    ModelUnavailableError,
    OutputParseError,
    QuotaExceededError,
    TransientGenerationError,
)
from utils.model_config import TaskComplexity, fallback_chain, select_generator
from utils.quota import calculate_backoff_delay
from utils.settings import MAX_ATTEMPTS_PER_GENERATOR, MAX_VALIDATION_RETRIES

logger = logging.getLogger(__name__)

Parser = Callable[[str], Any]
Rescope = Callable[[int], Tuple[GenerationRequest, Parser]]


class ResilientGenerator:
    def __init__(
        self,
        client: Optional[GeneratorClient] = None,
        quota_service=None,
        max_attempts_per_generator: int = MAX_ATTEMPTS_PER_GENERATOR,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client or GeneratorClient()
        self.quota_service = quota_service
        self.max_attempts_per_generator = max_attempts_per_generator
        self._sleep = sleep

    def select_generator(
        self,
        task_type: str,
        complexity: Optional[TaskComplexity] = None,
        is_streaming: bool = False,
    ) -> str:
        return select_generator(task_type, complexity, is_streaming)

    def fallback_chain(
        self,
        task_type: str,
        complexity: Optional[TaskComplexity] = None,
        is_streaming: bool = False,
    ) -> List[str]:
        return fallback_chain(task_type, complexity, is_streaming)

    def _chain_for(self, generator_id: str, request: GenerationRequest) -> List[str]:
        rest = self.fallback_chain(request.task_type, request.complexity, request.stream)
        return [generator_id] + [g for g in rest if g != generator_id]

    async def _record(self, generator_id: str, outcome: str) -> None:
        if self.quota_service is None:
            return
        try:
            await self.quota_service.record_request(generator_id, outcome)
        except Exception as e:
            logger.warning(f"Quota usage tracking failed (non-fatal): {e}")

    async def invoke(self, request: GenerationRequest) -> InvocationResult:
        """Route the request and invoke it with retries and fallback."""
        generator_id = self.select_generator(request.task_type, request.complexity, request.stream)
        return await self.invoke_with_retry(generator_id, request)

    async def invoke_with_retry(
        self,
        generator_id: str,
        request: GenerationRequest,
        max_attempts_per_generator: Optional[int] = None,
    ) -> InvocationResult:
        max_attempts = max_attempts_per_generator or self.max_attempts_per_generator
        chain = self._chain_for(generator_id, request)

        tried: List[str] = []
        attempts_made = 0
        last_error: Optional[Exception] = None
        only_quota_errors = True

        for gen in chain:
            tried.append(gen)
            for attempt in range(max_attempts):
                attempts_made += 1
                try:
                    result = await self.client.generate(gen, request)
                except QuotaExceededError as e:
                    await self._record(gen, "quota_exceeded")
                    last_error = e
                    if not e.retryable:
                        logger.warning(f"[resilience] {gen} hit a terminal quota limit, pausing")
                        raise
                    if attempt < max_attempts - 1:
                        delay = calculate_backoff_delay(attempt, e.quota_info)
                        logger.warning(
                            f"[resilience] {gen} per-minute quota (attempt {attempt + 1}/{max_attempts}). "
                            f"Retrying in {delay:.0f}s..."
                        )
                        await self._sleep(delay)
                    continue
                except TransientGenerationError as e:
                    await self._record(gen, "failure")
                    last_error = e
                    only_quota_errors = False
                    if attempt < max_attempts - 1:
                        delay = calculate_backoff_delay(attempt)
                        logger.warning(
                            f"[resilience] {gen} transient error (attempt {attempt + 1}/{max_attempts}). "
                            f"Retrying in {delay:.0f}s..."
                        )
                        await self._sleep(delay)
                    continue
                except ModelUnavailableError as e:
                    last_error = e
                    only_quota_errors = False
                    logger.warning(f"[resilience] {gen} unavailable, advancing fallback chain: {e.message}")
                    break
                except GenerationError as e:
                    await self._record(gen, "failure")
                    last_error = e
                    only_quota_errors = False
                    logger.warning(f"[resilience] {gen} failed, advancing fallback chain: {e.message}")
                    break

                await self._record(gen, "success")
                fallbacks = tried[1:]
                if fallbacks:
                    logger.info(f"[resilience] {gen} succeeded after fallback from {generator_id}")
                return InvocationResult(
                    result=result,
                    generator_used=gen,
                    attempts_made=attempts_made,
                    fallbacks_used=fallbacks,
                )

        if only_quota_errors and isinstance(last_error, QuotaExceededError):
            raise last_error
        logger.error(f"[resilience] all generators failed: {tried}")
        raise AllGeneratorsFailedError(tried, last_error)

    async def generate_structured(
        self,
        request: GenerationRequest,
        parse: Parser,
        max_validation_retries: int = MAX_VALIDATION_RETRIES,
        rescope: Optional[Rescope] = None,
    ) -> Tuple[Any, InvocationResult]:
        """
        Invoke and parse, retrying when the output cannot be recovered.

        `rescope(retry_number)` may return a smaller request and matching
        parser for the retry. Returns (parsed, invocation).
        """
        last_error: Optional[GenerationError] = None
        for retry in range(max_validation_retries + 1):
            if retry and rescope is not None:
                request, parse = rescope(retry)
            invocation = await self.invoke(request)
            if invocation.result.truncated:
                logger.warning(
                    f"[resilience] {invocation.generator_used} output truncated at "
                    f"{invocation.result.output_tokens} tokens, recovering"
                )
            try:
                return parse(invocation.result.text), invocation
            except (ContentValidationError, OutputParseError) as e:
                last_error = e
                logger.warning(
                    f"[resilience] structured output rejected (attempt {retry + 1}/{max_validation_retries + 1}): "
                    f"{e.message}"
                )
        raise last_error

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Stream tokens, falling back to the next generator only before the first token."""
        chain = self.fallback_chain(request.task_type, request.complexity, is_streaming=True)
        last_error: Optional[Exception] = None
        for gen in chain:
            started = False
            try:
                async for token in self.client.stream(gen, request):
                    started = True
                    yield token
                await self._record(gen, "success")
                return
            except QuotaExceededError as e:
                await self._record(gen, "quota_exceeded")
                if started or not e.retryable:
                    raise
                last_error = e
            except GenerationError as e:
                if started:
                    raise
                await self._record(gen, "failure")
                last_error = e
            logger.warning(f"[resilience] stream from {gen} failed before first token, trying next")
        raise AllGeneratorsFailedError(chain, last_error)
