"""
LLM Provider Configuration - BYOK (Bring Your Own Key) Support
Supports OpenAI, OpenRouter, Google Gemini, and Anthropic Claude for case generation.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"
    CLAUDE = "claude"


class PipelinePhase(str, Enum):
    """Generation phases that call the content generator."""
    PLAN = "plan"
    EXPAND = "expand"
    DESIGN = "design"
    GENERATE = "generate"
    VALIDATE = "validate"
    RED_TEAM = "red_team"
    FIX = "fix"


# ============================================================================
# Model Definitions by Provider
# ============================================================================

OPENAI_MODELS: Dict[str, Dict[str, Any]] = {
    "gpt-4o": {
        "name": "GPT-4o",
        "description": "Multimodal flagship, strong structured output",
        "context_window": 128000,
        "max_output": 16384,
        "supports_images": False,
        "supports_json_schema": True,
        "recommended_for": ["plan", "expand", "design", "red_team", "fix"]
    },
    "gpt-4o-mini": {
        "name": "GPT-4o Mini",
        "description": "Smaller, faster, cheaper GPT-4o variant",
        "context_window": 128000,
        "max_output": 16384,
        "supports_images": False,
        "supports_json_schema": True,
        "recommended_for": ["generate", "validate"]
    },
    "gpt-image-1": {
        "name": "GPT Image 1",
        "description": "Image generation and reference-conditioned editing",
        "context_window": 0,
        "max_output": 0,
        "supports_images": True,
        "supports_json_schema": False,
        "recommended_for": ["image"]
    },
}

OPENROUTER_MODELS: Dict[str, Dict[str, Any]] = {
    "openai/gpt-4o": {
        "name": "GPT-4o (via OpenRouter)",
        "description": "OpenAI flagship through OpenRouter",
        "context_window": 128000,
        "max_output": 16384,
        "recommended_for": ["plan", "design", "red_team"]
    },
    "anthropic/claude-3.5-sonnet": {
        "name": "Claude 3.5 Sonnet (via OpenRouter)",
        "description": "Strong long-form documentary writing",
        "context_window": 200000,
        "max_output": 8192,
        "recommended_for": ["generate", "expand"]
    },
    "google/gemini-2.0-flash-exp": {
        "name": "Gemini 2.0 Flash (via OpenRouter)",
        "description": "Fast, large context; good for chunk analysis",
        "context_window": 1000000,
        "max_output": 8192,
        "recommended_for": ["red_team", "validate"]
    },
}

GEMINI_MODELS: Dict[str, Dict[str, Any]] = {
    "gemini-1.5-pro": {
        "name": "Gemini 1.5 Pro",
        "description": "Long context reasoning",
        "context_window": 2000000,
        "max_output": 8192,
        "recommended_for": ["red_team", "validate"]
    },
    "gemini-1.5-flash": {
        "name": "Gemini 1.5 Flash",
        "description": "Fast and cheap",
        "context_window": 1000000,
        "max_output": 8192,
        "recommended_for": ["generate"]
    },
}

CLAUDE_MODELS: Dict[str, Dict[str, Any]] = {
    "claude-sonnet-4-20250514": {
        "name": "Claude Sonnet 4",
        "description": "Balanced reasoning and writing",
        "context_window": 200000,
        "max_output": 16384,
        "recommended_for": ["plan", "expand", "design", "generate"]
    },
    "claude-3-5-sonnet-20241022": {
        "name": "Claude 3.5 Sonnet",
        "description": "Reliable JSON adherence",
        "context_window": 200000,
        "max_output": 8192,
        "recommended_for": ["red_team", "fix"]
    },
}


# ============================================================================
# Provider Configuration Models
# ============================================================================

class ProviderConfig(BaseModel):
    """Base configuration for an LLM provider."""
    provider: LLMProvider
    api_key: SecretStr
    base_url: Optional[str] = None
    organization_id: Optional[str] = None
    default_model: str
    enabled: bool = True


class OpenAIConfig(ProviderConfig):
    """OpenAI-specific configuration."""
    provider: LLMProvider = LLMProvider.OPENAI
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return OPENAI_MODELS


class OpenRouterConfig(ProviderConfig):
    """OpenRouter-specific configuration."""
    provider: LLMProvider = LLMProvider.OPENROUTER
    base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o"
    site_url: Optional[str] = None
    app_name: Optional[str] = "CaseGen"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return OPENROUTER_MODELS


class GeminiConfig(ProviderConfig):
    """Google Gemini-specific configuration."""
    provider: LLMProvider = LLMProvider.GEMINI
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    default_model: str = "gemini-1.5-pro"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return GEMINI_MODELS


class ClaudeConfig(ProviderConfig):
    """Anthropic Claude-specific configuration."""
    provider: LLMProvider = LLMProvider.CLAUDE
    base_url: str = "https://api.anthropic.com/v1"
    default_model: str = "claude-sonnet-4-20250514"

    @property
    def available_models(self) -> Dict[str, Dict[str, Any]]:
        return CLAUDE_MODELS


# ============================================================================
# Phase Model Assignment
# ============================================================================

class PhaseModelConfig(BaseModel):
    """Configuration for which model each phase uses."""
    plan_provider: LLMProvider = LLMProvider.OPENAI
    plan_model: str = "gpt-4o"

    expand_provider: LLMProvider = LLMProvider.OPENAI
    expand_model: str = "gpt-4o"

    design_provider: LLMProvider = LLMProvider.OPENAI
    design_model: str = "gpt-4o"

    generate_provider: LLMProvider = LLMProvider.OPENAI
    generate_model: str = "gpt-4o-mini"

    validate_provider: LLMProvider = LLMProvider.OPENAI
    validate_model: str = "gpt-4o-mini"

    red_team_provider: LLMProvider = LLMProvider.OPENAI
    red_team_model: str = "gpt-4o"

    fix_provider: LLMProvider = LLMProvider.OPENAI
    fix_model: str = "gpt-4o"

    # Images are only produced through OpenAI-compatible endpoints
    image_model: str = "gpt-image-1"

    def for_phase(self, phase: PipelinePhase) -> tuple[LLMProvider, str]:
        """Return the (provider, model) pair assigned to a phase."""
        provider = getattr(self, f"{phase.value}_provider")
        model = getattr(self, f"{phase.value}_model")
        return provider, model


# ============================================================================
# Master Configuration
# ============================================================================

class LLMConfiguration(BaseModel):
    """Master LLM configuration with all providers."""

    # Provider configurations (user provides their own keys)
    openai: Optional[OpenAIConfig] = None
    openrouter: Optional[OpenRouterConfig] = None
    gemini: Optional[GeminiConfig] = None
    claude: Optional[ClaudeConfig] = None

    # Phase-specific model assignments
    phase_models: PhaseModelConfig = Field(default_factory=PhaseModelConfig)

    # Global settings
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: int = Field(default=120, ge=30, le=600)

    def get_provider_config(self, provider: LLMProvider) -> Optional[ProviderConfig]:
        """Get configuration for a specific provider."""
        provider_map = {
            LLMProvider.OPENAI: self.openai,
            LLMProvider.OPENROUTER: self.openrouter,
            LLMProvider.GEMINI: self.gemini,
            LLMProvider.CLAUDE: self.claude,
        }
        return provider_map.get(provider)

    def get_enabled_providers(self) -> List[LLMProvider]:
        """Get list of enabled providers."""
        enabled = []
        if self.openai and self.openai.enabled:
            enabled.append(LLMProvider.OPENAI)
        if self.openrouter and self.openrouter.enabled:
            enabled.append(LLMProvider.OPENROUTER)
        if self.gemini and self.gemini.enabled:
            enabled.append(LLMProvider.GEMINI)
        if self.claude and self.claude.enabled:
            enabled.append(LLMProvider.CLAUDE)
        return enabled

    def validate_phase_models(self) -> List[str]:
        """Validate that every phase model is available from an enabled provider."""
        errors = []
        for phase in PipelinePhase:
            provider, model = self.phase_models.for_phase(phase)
            provider_config = self.get_provider_config(provider)
            if not provider_config:
                errors.append(f"{phase.value}: Provider {provider.value} is not configured")
            elif not provider_config.enabled:
                errors.append(f"{phase.value}: Provider {provider.value} is disabled")
            elif model not in provider_config.available_models:
                errors.append(f"{phase.value}: Model {model} not available for {provider.value}")

        return errors


# ============================================================================
# Helper Functions
# ============================================================================

def get_all_models() -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Get all available models grouped by provider."""
    return {
        "openai": OPENAI_MODELS,
        "openrouter": OPENROUTER_MODELS,
        "gemini": GEMINI_MODELS,
        "claude": CLAUDE_MODELS,
    }


def get_models_for_phase(phase_name: str) -> Dict[str, List[str]]:
    """Get recommended models for a specific phase."""
    all_models = get_all_models()
    recommended = {}

    for provider, models in all_models.items():
        provider_recommended = []
        for model_id, model_info in models.items():
            if phase_name.lower() in model_info.get("recommended_for", []):
                provider_recommended.append(model_id)
        if provider_recommended:
            recommended[provider] = provider_recommended

    return recommended


def create_default_config_from_env() -> LLMConfiguration:
    """Create configuration from environment variables."""
    import os

    config = LLMConfiguration()

    # OpenAI
    if os.getenv("OPENAI_API_KEY"):
        config.openai = OpenAIConfig(
            api_key=SecretStr(os.getenv("OPENAI_API_KEY")),
            organization_id=os.getenv("OPENAI_ORG_ID"),
        )

    # OpenRouter
    if os.getenv("OPENROUTER_API_KEY"):
        config.openrouter = OpenRouterConfig(
            api_key=SecretStr(os.getenv("OPENROUTER_API_KEY")),
            site_url=os.getenv("OPENROUTER_SITE_URL"),
        )

    # Gemini
    if os.getenv("GEMINI_API_KEY"):
        config.gemini = GeminiConfig(
            api_key=SecretStr(os.getenv("GEMINI_API_KEY")),
        )

    # Claude
    if os.getenv("ANTHROPIC_API_KEY"):
        config.claude = ClaudeConfig(
            api_key=SecretStr(os.getenv("ANTHROPIC_API_KEY")),
        )

    # Single provider/model override for every phase
    provider_override = os.getenv("CASEGEN_LLM_PROVIDER")
    model_override = os.getenv("CASEGEN_LLM_MODEL")
    if provider_override or model_override:
        updates: Dict[str, Any] = {}
        for phase in PipelinePhase:
            if provider_override:
                updates[f"{phase.value}_provider"] = LLMProvider(provider_override)
            if model_override:
                updates[f"{phase.value}_model"] = model_override
        config.phase_models = config.phase_models.model_copy(update=updates)

    if os.getenv("CASEGEN_IMAGE_MODEL"):
        config.phase_models.image_model = os.getenv("CASEGEN_IMAGE_MODEL")

    return config
