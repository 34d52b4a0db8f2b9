# Shared utilities
from .model_config import (
    ModelConfig,
    ModelProvider,
    MODEL_CONFIGS,
    fallback_chain,
    select_generator,
)
from .storage import SupabaseStore, generate_uuid

__all__ = [
    'ModelConfig',
    'ModelProvider',
    'MODEL_CONFIGS',
    'fallback_chain',
    'select_generator',
    'SupabaseStore',
    'generate_uuid',
]
