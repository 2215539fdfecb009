"""
CaseGen Configuration Module
LLM provider configuration and pipeline settings.
"""

from .llm_providers import (
    CLAUDE_MODELS,
    GEMINI_MODELS,
    # Model Definitions
    OPENAI_MODELS,
    OPENROUTER_MODELS,
    ClaudeConfig,
    GeminiConfig,
    LLMConfiguration,
    # Enums
    LLMProvider,
    OpenAIConfig,
    OpenRouterConfig,
    PhaseModelConfig,
    PipelinePhase,
    # Configuration Models
    ProviderConfig,
    create_default_config_from_env,
    # Helper Functions
    get_all_models,
    get_models_for_phase,
)
from .settings import DEFAULT_QUALITY_THRESHOLDS, PipelineSettings, load_settings_from_env

__all__ = [
    "LLMProvider",
    "PipelinePhase",
    "OPENAI_MODELS",
    "OPENROUTER_MODELS",
    "GEMINI_MODELS",
    "CLAUDE_MODELS",
    "ProviderConfig",
    "OpenAIConfig",
    "OpenRouterConfig",
    "GeminiConfig",
    "ClaudeConfig",
    "PhaseModelConfig",
    "LLMConfiguration",
    "get_all_models",
    "get_models_for_phase",
    "create_default_config_from_env",
    "PipelineSettings",
    "DEFAULT_QUALITY_THRESHOLDS",
    "load_settings_from_env",
]
