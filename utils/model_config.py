"""
Generator catalogue and routing for the generation pipeline.
Centralized model management: one table for models, one for routing.
"""

from typing import Dict, Any, List, Optional
from enum import Enum


class ModelProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GROQ = "groq"


class ModelTier(str, Enum):
    REALTIME = "realtime"
    LITE = "lite"
    BALANCED = "balanced"
    ADVANCED = "advanced"


class TaskComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    STREAMING = "streaming"


# Model configurations
MODEL_CONFIGS: Dict[str, Dict[str, Any]] = {
    "claude-haiku-4-5": {
        "provider": ModelProvider.ANTHROPIC,
        "model": "claude-haiku-4-5-20251001",
        "tier": ModelTier.BALANCED,
        "max_tokens": 16000,
        "supports_streaming": True,
        "temperature": 0.7
    },
    "claude-sonnet-4-5": {
        "provider": ModelProvider.ANTHROPIC,
        "model": "claude-sonnet-4-5-20250929",
        "tier": ModelTier.ADVANCED,
        "max_tokens": 16000,
        "supports_streaming": True,
        "temperature": 0.7
    },
    "gpt-5-mini": {
        "provider": ModelProvider.OPENAI,
        "model": "gpt-5-mini",
        "tier": ModelTier.REALTIME,
        "max_tokens": 16000,
        "supports_streaming": True,
        "temperature": None
    },
    "llama-4-scout": {
        "provider": ModelProvider.GROQ,
        "model": "meta-llama/llama-4-scout-17b-16e-instruct",
        "tier": ModelTier.LITE,
        "max_tokens": 8192,
        "supports_streaming": True,
        "temperature": 0.7
    },
}

REALTIME_MODEL = "gpt-5-mini"
LITE_MODEL = "llama-4-scout"
DEFAULT_MODEL = "claude-haiku-4-5"
ADVANCED_MODEL = "claude-sonnet-4-5"

# Routing: streaming -> realtime, simple -> lite, everything else -> balanced
ROUTING_TABLE: Dict[str, str] = {
    "streaming": REALTIME_MODEL,
    "simple": LITE_MODEL,
    "default": DEFAULT_MODEL,
}

FALLBACK_CHAINS: Dict[str, List[str]] = {
    "streaming": [REALTIME_MODEL, ADVANCED_MODEL, LITE_MODEL],
    "simple": [LITE_MODEL, DEFAULT_MODEL, ADVANCED_MODEL],
    "default": [DEFAULT_MODEL, ADVANCED_MODEL, LITE_MODEL],
}


def _route_key(complexity: Optional[TaskComplexity], is_streaming: bool) -> str:
    if is_streaming or complexity == TaskComplexity.STREAMING:
        return "streaming"
    if complexity == TaskComplexity.SIMPLE:
        return "simple"
    return "default"


def select_generator(
    task_type: str,
    complexity: Optional[TaskComplexity] = None,
    is_streaming: bool = False,
) -> str:
    """Pick the generator for a task from the static routing table."""
    return ROUTING_TABLE[_route_key(complexity, is_streaming)]


def fallback_chain(
    task_type: str,
    complexity: Optional[TaskComplexity] = None,
    is_streaming: bool = False,
) -> List[str]:
    """Ordered generators to try for a task, primary first."""
    return list(FALLBACK_CHAINS[_route_key(complexity, is_streaming)])


class ModelConfig:
    """Model configuration manager"""

    @staticmethod
    def get_config(model_key: Optional[str] = None) -> Dict[str, Any]:
        """Get configuration for specified model or default"""
        key = model_key or DEFAULT_MODEL

        if key not in MODEL_CONFIGS:
            raise ValueError(f"Unknown model: {key}. Available: {list(MODEL_CONFIGS.keys())}")

        return MODEL_CONFIGS[key]
