"""
Pipeline Settings for CaseGen

Runtime knobs for storage, concurrency, red-team chunking and the fix loop.
Values come from CASEGEN_* environment variables (a .env file is honoured).
"""

import os
from typing import Any, Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr


DEFAULT_QUALITY_THRESHOLDS: Dict[str, Any] = {
    "max_high": 0,               # any high-priority issue blocks packaging
    "max_medium": None,          # None = unlimited
    "max_total": None,
    "require_llm_verdict": False,
}


class PipelineSettings(BaseModel):
    """Settings shared by every phase service."""

    # Storage
    storage_backend: Literal["local", "supabase"] = "local"
    storage_root: str = "./casegen-data"
    context_container: str = "context"
    bundles_container: str = "bundles"
    logs_container: str = "logs"
    supabase_url: Optional[str] = None
    supabase_key: Optional[SecretStr] = None

    # Context manager read cache (0 disables it)
    context_cache_ttl_seconds: int = Field(default=0, ge=0)

    # Fan-out caps
    generation_concurrency: int = Field(default=4, ge=1, le=32)
    red_team_max_parallel_calls: int = Field(default=3, ge=1, le=16)

    # Red-team chunking
    red_team_max_bytes_per_call: int = Field(default=60_000, ge=1_000)
    use_global_red_team: bool = True

    # Fix loop
    max_fix_iterations: int = Field(default=3, ge=0, le=10)
    quality_thresholds: Dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_QUALITY_THRESHOLDS)
    )

    # Media
    generate_images: bool = True

    # Analysis cache
    redis_url: Optional[str] = None
    analysis_cache_ttl_seconds: int = Field(default=86400, ge=60)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def load_settings_from_env() -> PipelineSettings:
    """Create settings from environment variables."""
    load_dotenv()

    thresholds = dict(DEFAULT_QUALITY_THRESHOLDS)
    if os.getenv("CASEGEN_QUALITY_MAX_HIGH"):
        thresholds["max_high"] = int(os.getenv("CASEGEN_QUALITY_MAX_HIGH"))
    if os.getenv("CASEGEN_QUALITY_MAX_MEDIUM"):
        thresholds["max_medium"] = int(os.getenv("CASEGEN_QUALITY_MAX_MEDIUM"))
    if os.getenv("CASEGEN_QUALITY_MAX_TOTAL"):
        thresholds["max_total"] = int(os.getenv("CASEGEN_QUALITY_MAX_TOTAL"))
    thresholds["require_llm_verdict"] = _env_bool("CASEGEN_QUALITY_REQUIRE_LLM", False)

    supabase_key = os.getenv("SUPABASE_SERVICE_KEY")

    return PipelineSettings(
        storage_backend=os.getenv("CASEGEN_STORAGE_BACKEND", "local"),
        storage_root=os.getenv("CASEGEN_STORAGE_ROOT", "./casegen-data"),
        context_container=os.getenv("CASEGEN_CONTEXT_CONTAINER", "context"),
        bundles_container=os.getenv("CASEGEN_BUNDLES_CONTAINER", "bundles"),
        logs_container=os.getenv("CASEGEN_LOGS_CONTAINER", "logs"),
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=SecretStr(supabase_key) if supabase_key else None,
        context_cache_ttl_seconds=_env_int("CASEGEN_CONTEXT_CACHE_TTL", 0),
        generation_concurrency=_env_int("CASEGEN_GENERATION_CONCURRENCY", 4),
        red_team_max_parallel_calls=_env_int("CASEGEN_REDTEAM_PARALLEL", 3),
        red_team_max_bytes_per_call=_env_int("CASEGEN_REDTEAM_MAX_BYTES", 60_000),
        use_global_red_team=_env_bool("CASEGEN_REDTEAM_GLOBAL", True),
        max_fix_iterations=_env_int("CASEGEN_MAX_FIX_ITERATIONS", 3),
        quality_thresholds=thresholds,
        generate_images=_env_bool("CASEGEN_GENERATE_IMAGES", True),
        redis_url=os.getenv("REDIS_URL"),
        analysis_cache_ttl_seconds=_env_int("CASEGEN_ANALYSIS_CACHE_TTL", 86400),
    )
