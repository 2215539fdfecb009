"""
CaseGen Services Module
Artifact storage, analysis cache, per-case step logs and tracing.
"""

from .analysis_cache import (
    AnalysisCache,
    InMemoryAnalysisCache,
    RedisAnalysisCache,
    create_analysis_cache,
)
from .artifact_store import (
    ArtifactStore,
    LocalArtifactStore,
    SupabaseArtifactStore,
    create_artifact_store,
)
from .case_logging import CaseLoggingService
from .tracing import TracingService, tracing_service

__all__ = [
    "ArtifactStore",
    "LocalArtifactStore",
    "SupabaseArtifactStore",
    "create_artifact_store",
    "AnalysisCache",
    "InMemoryAnalysisCache",
    "RedisAnalysisCache",
    "create_analysis_cache",
    "CaseLoggingService",
    "TracingService",
    "tracing_service",
]
