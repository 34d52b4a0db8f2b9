"""
Provider adapters for text generation (Anthropic, OpenAI, Groq).

Each adapter turns a GenerationRequest into a provider call and the provider
response into a GenerationResult. Provider exceptions are classified here,
once, into the typed GenerationError subclasses; nothing downstream looks at
provider error text again.
"""

import os
import json
import time
import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import anthropic
import groq
import openai
from dotenv import load_dotenv

from models.generation_models import GenerationRequest, GenerationResult
from utils.exceptions import (
    GenerationError,
    ModelUnavailableError,
    QuotaExceededError,
    TransientGenerationError,
)
from utils.model_config import ModelConfig, ModelProvider
from utils.quota import parse_quota_error

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are an expert educational content creator."
JSON_INSTRUCTION = (
    " You MUST respond with ONLY valid JSON. No markdown code blocks, no extra text."
    " Ensure all string values have properly escaped inner quotes."
)

_STATUS_ERRORS = (openai.APIStatusError, anthropic.APIStatusError, groq.APIStatusError)
_CONNECTION_ERRORS = (openai.APIConnectionError, anthropic.APIConnectionError, groq.APIConnectionError)
_TRANSIENT_STATUS = {408, 409, 425, 429, 500, 502, 503, 504, 529}
_UNAVAILABLE_MARKERS = ("not found", "does not exist", "not supported", "decommissioned", "unsupported model")


def _error_text(exc: Exception) -> str:
    text = str(exc)
    body = getattr(exc, "body", None)
    if body:
        try:
            text = f"{text} {json.dumps(body)}"
        except (TypeError, ValueError):
            text = f"{text} {body}"
    return text


def classify_provider_error(exc: Exception, generator_id: str) -> GenerationError:
    """Map an SDK exception onto the generation error taxonomy."""
    if isinstance(exc, GenerationError):
        return exc

    text = _error_text(exc)
    context = {"provider_error": type(exc).__name__}

    if isinstance(exc, _STATUS_ERRORS):
        status = exc.status_code
        context["status_code"] = status
        if status in (403, 429):
            quota_info = parse_quota_error(text)
            if quota_info is not None:
                return QuotaExceededError(quota_info, generator_id=generator_id)
        if status == 404:
            return ModelUnavailableError(f"{generator_id} unavailable: {exc}", generator_id, context)
        if status == 400 and "model" in text.lower() and any(m in text.lower() for m in _UNAVAILABLE_MARKERS):
            return ModelUnavailableError(f"{generator_id} unsupported: {exc}", generator_id, context)
        if status in _TRANSIENT_STATUS or status >= 500:
            return TransientGenerationError(f"{generator_id} returned {status}: {exc}", generator_id, context)
        return GenerationError(f"{generator_id} request rejected ({status}): {exc}", context=context)

    if isinstance(exc, (_CONNECTION_ERRORS, asyncio.TimeoutError)):
        return TransientGenerationError(f"{generator_id} connection/timeout: {exc}", generator_id, context)

    return GenerationError(f"{generator_id} failed: {exc}", context=context)


def _system_prompt(request: GenerationRequest) -> str:
    prompt = request.system_prompt or DEFAULT_SYSTEM_PROMPT
    if request.expect_json:
        prompt += JSON_INSTRUCTION
    return prompt


# ── Lazy SDK clients ──────────────────────────────────────────────────────────

_anthropic_client: Optional[anthropic.AsyncAnthropic] = None
_openai_client: Optional[openai.AsyncOpenAI] = None
_groq_client: Optional[groq.AsyncGroq] = None


def get_anthropic() -> anthropic.AsyncAnthropic:
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = anthropic.AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))
    return _anthropic_client


def get_openai() -> openai.AsyncOpenAI:
    global _openai_client
    if _openai_client is None:
        _openai_client = openai.AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
    return _openai_client


def get_groq() -> groq.AsyncGroq:
    global _groq_client
    if _groq_client is None:
        _groq_client = groq.AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
    return _groq_client


# ── Adapters ──────────────────────────────────────────────────────────────────

class AnthropicAdapter:
    provider = ModelProvider.ANTHROPIC

    def __init__(self, client: Optional[anthropic.AsyncAnthropic] = None):
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        return self._client or get_anthropic()

    def _params(self, config: Dict[str, Any], request: GenerationRequest) -> Dict[str, Any]:
        return {
            "model": config["model"],
            "max_tokens": request.max_tokens or config["max_tokens"],
            "temperature": request.temperature if request.temperature is not None else config.get("temperature", 0.7),
            "system": _system_prompt(request),
            "messages": [{"role": "user", "content": request.prompt}],
        }

    async def complete(self, generator_id: str, config: Dict[str, Any], request: GenerationRequest) -> GenerationResult:
        response = await self.client.messages.create(**self._params(config, request))

        # Concatenate only text blocks
        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text

        finish_reason = "length" if response.stop_reason == "max_tokens" else response.stop_reason
        usage = getattr(response, "usage", None)
        return GenerationResult(
            text=text,
            generator_id=generator_id,
            provider=self.provider.value,
            model=config["model"],
            finish_reason=finish_reason,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )

    async def stream(self, generator_id: str, config: Dict[str, Any], request: GenerationRequest) -> AsyncIterator[str]:
        async with self.client.messages.stream(**self._params(config, request)) as stream:
            async for text in stream.text_stream:
                yield text


class _ChatCompletionsAdapter:
    """OpenAI and Groq share the chat-completions response shape."""
    provider: ModelProvider

    def _get_client(self):
        raise NotImplementedError

    def _params(self, config: Dict[str, Any], request: GenerationRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": config["model"],
            "messages": [
                {"role": "system", "content": _system_prompt(request)},
                {"role": "user", "content": request.prompt},
            ],
        }
        temperature = request.temperature if request.temperature is not None else config.get("temperature")
        if temperature is not None:
            params["temperature"] = temperature
        if request.expect_json and not request.stream:
            params["response_format"] = {"type": "json_object"}
        return params

    def _token_param(self) -> str:
        return "max_tokens"

    async def complete(self, generator_id: str, config: Dict[str, Any], request: GenerationRequest) -> GenerationResult:
        params = self._params(config, request)
        params[self._token_param()] = request.max_tokens or config["max_tokens"]
        response = await self._get_client().chat.completions.create(**params)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return GenerationResult(
            text=choice.message.content or "",
            generator_id=generator_id,
            provider=self.provider.value,
            model=config["model"],
            finish_reason=choice.finish_reason,
            input_tokens=getattr(usage, "prompt_tokens", None),
            output_tokens=getattr(usage, "completion_tokens", None),
        )

    async def stream(self, generator_id: str, config: Dict[str, Any], request: GenerationRequest) -> AsyncIterator[str]:
        params = self._params(config, request)
        params[self._token_param()] = request.max_tokens or config["max_tokens"]
        params["stream"] = True
        response = await self._get_client().chat.completions.create(**params)
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                yield delta


class OpenAIAdapter(_ChatCompletionsAdapter):
    provider = ModelProvider.OPENAI

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None):
        self._client = client

    def _get_client(self) -> openai.AsyncOpenAI:
        return self._client or get_openai()

    def _token_param(self) -> str:
        return "max_completion_tokens"


class GroqAdapter(_ChatCompletionsAdapter):
    provider = ModelProvider.GROQ

    def __init__(self, client: Optional[groq.AsyncGroq] = None):
        self._client = client

    def _get_client(self) -> groq.AsyncGroq:
        return self._client or get_groq()


class GeneratorClient:
    """
    Single entry point for generator calls.

    Resolves a generator id to its provider adapter, times the call and
    classifies any failure before it leaves this module.
    """

    def __init__(self, adapters: Optional[Dict[ModelProvider, Any]] = None):
        self.adapters = adapters or {
            ModelProvider.ANTHROPIC: AnthropicAdapter(),
            ModelProvider.OPENAI: OpenAIAdapter(),
            ModelProvider.GROQ: GroqAdapter(),
        }

    def _adapter(self, generator_id: str):
        try:
            config = ModelConfig.get_config(generator_id)
        except ValueError as e:
            raise ModelUnavailableError(str(e), generator_id) from e
        adapter = self.adapters.get(config["provider"])
        if adapter is None:
            raise ModelUnavailableError(f"No adapter for provider {config['provider']}", generator_id)
        return adapter, config

    async def generate(self, generator_id: str, request: GenerationRequest) -> GenerationResult:
        adapter, config = self._adapter(generator_id)
        start = time.time()
        try:
            result = await adapter.complete(generator_id, config, request)
        except Exception as e:
            error = classify_provider_error(e, generator_id)
            logger.warning(f"Generator {generator_id} failed: {type(error).__name__}: {error.message}")
            raise error from e
        result.latency_ms = int((time.time() - start) * 1000)
        return result

    async def stream(self, generator_id: str, request: GenerationRequest) -> AsyncIterator[str]:
        adapter, config = self._adapter(generator_id)
        try:
            async for token in adapter.stream(generator_id, config, request):
                yield token
        except Exception as e:
            raise classify_provider_error(e, generator_id) from e


async def embed_texts(texts: List[str], model: str = "text-embedding-3-small", batch_size: int = 100) -> List[List[float]]:
    """Embed texts with OpenAI in batches, preserving order."""
    embeddings: List[List[float]] = []
    for i in range(0, len(texts), batch_size):
        batch = texts[i:i + batch_size]
        try:
            response = await get_openai().embeddings.create(model=model, input=batch)
        except Exception as e:
            raise classify_provider_error(e, model) from e
        embeddings.extend(item.embedding for item in response.data)
    logger.info(f"Generated {len(embeddings)} embeddings with {model}")
    return embeddings
