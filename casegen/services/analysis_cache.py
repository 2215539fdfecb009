"""
Red-Team Analysis Cache for CaseGen
Caches global and chunk analyses keyed by content hash, analysis type and focus areas.
"""

import asyncio
import hashlib
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

logger = logging.getLogger("casegen")


def compute_content_hash(content: str) -> str:
    """sha256 hex digest of the analysed content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def build_cache_key(content_hash: str, analysis_type: str, focus_areas: Optional[List[str]] = None) -> str:
    key = f"{content_hash}:{analysis_type}"
    if focus_areas:
        key += ":" + compute_content_hash("|".join(sorted(focus_areas)))[:16]
    return key


class AnalysisCache(ABC):
    """Abstract analysis cache."""

    @abstractmethod
    async def get(self, content_hash: str, analysis_type: str, focus_areas: Optional[List[str]] = None) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, content_hash: str, analysis: str, analysis_type: str, focus_areas: Optional[List[str]] = None) -> None:
        pass

    async def clear(self) -> None:
        pass


class InMemoryAnalysisCache(AnalysisCache):
    """Process-local cache with per-entry expiry."""

    def __init__(self, ttl_seconds: int = 86400):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def get(self, content_hash: str, analysis_type: str, focus_areas: Optional[List[str]] = None) -> Optional[str]:
        key = build_cache_key(content_hash, analysis_type, focus_areas)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            analysis, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
        logger.info(f"[analysis_cache] Cache hit for {analysis_type} analysis {content_hash[:12]}")
        return analysis

    async def set(self, content_hash: str, analysis: str, analysis_type: str, focus_areas: Optional[List[str]] = None) -> None:
        key = build_cache_key(content_hash, analysis_type, focus_areas)
        async with self._lock:
            self._entries[key] = (analysis, time.monotonic() + self.ttl_seconds)
            size = len(self._entries)
        logger.info(f"[analysis_cache] Cached {analysis_type} analysis for hash {content_hash[:12]} (cache size: {size})")

    async def clear_expired(self) -> int:
        now = time.monotonic()
        async with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


class RedisAnalysisCache(AnalysisCache):
    """Redis-backed cache; entries expire through key TTLs."""

    KEY_PREFIX = "casegen:redteam:"

    def __init__(self, redis_url: str = "redis://localhost:6379", ttl_seconds: int = 86400):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        self._client = redis.from_url(self.redis_url, decode_responses=True)
        await self._client.ping()

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def get(self, content_hash: str, analysis_type: str, focus_areas: Optional[List[str]] = None) -> Optional[str]:
        key = self.KEY_PREFIX + build_cache_key(content_hash, analysis_type, focus_areas)
        value = await self.client.get(key)
        if value is not None:
            logger.info(f"[analysis_cache] Redis hit for {analysis_type} analysis {content_hash[:12]}")
        return value

    async def set(self, content_hash: str, analysis: str, analysis_type: str, focus_areas: Optional[List[str]] = None) -> None:
        key = self.KEY_PREFIX + build_cache_key(content_hash, analysis_type, focus_areas)
        await self.client.setex(key, self.ttl_seconds, analysis)

    async def clear(self) -> None:
        async for key in self.client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            await self.client.delete(key)


async def create_analysis_cache(settings) -> AnalysisCache:
    """Redis cache when REDIS_URL is configured, in-memory otherwise."""
    if settings.redis_url:
        cache = RedisAnalysisCache(settings.redis_url, settings.analysis_cache_ttl_seconds)
        try:
            await cache.connect()
            return cache
        except (redis.RedisError, OSError) as e:
            logger.warning(f"[analysis_cache] Redis unavailable ({e}); using in-memory cache")
    return InMemoryAnalysisCache(settings.analysis_cache_ttl_seconds)
