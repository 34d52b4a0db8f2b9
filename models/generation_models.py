"""
Request/response models for the generation layer.
Every provider response is normalized into GenerationResult at the adapter.
"""

from pydantic import BaseModel, Field
from typing import List, Optional

from utils.model_config import TaskComplexity


class GenerationRequest(BaseModel):
    prompt: str
    task_type: str = "general"
    complexity: TaskComplexity = TaskComplexity.MODERATE
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    expect_json: bool = False
    stream: bool = False


class GenerationResult(BaseModel):
    """Canonical generator output"""
    text: str
    generator_id: str
    provider: str
    model: str
    finish_reason: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    latency_ms: int = 0

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


class InvocationResult(BaseModel):
    result: GenerationResult
    generator_used: str
    attempts_made: int
    fallbacks_used: List[str] = Field(default_factory=list)
