"""
Unit tests for the red-team analysis cache.

Tests cover:
- Cache keys: content hash, analysis type and focus areas
- In-memory hits, misses and expiry
- Redis cache against a mocked client
- create_analysis_cache backend selection
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis.asyncio as redis

from casegen.config.settings import PipelineSettings
from casegen.services.analysis_cache import (
    InMemoryAnalysisCache,
    RedisAnalysisCache,
    build_cache_key,
    compute_content_hash,
    create_analysis_cache,
)


class TestCacheKeys:
    """Tests for key construction."""

    def test_focus_area_order_does_not_matter(self):
        digest = compute_content_hash("case")

        assert build_cache_key(digest, "chunk", ["a", "b"]) == build_cache_key(digest, "chunk", ["b", "a"])
        assert build_cache_key(digest, "chunk", ["a"]) != build_cache_key(digest, "chunk")
        assert build_cache_key(digest, "chunk") != build_cache_key(digest, "global")


class TestInMemoryAnalysisCache:
    """Tests for InMemoryAnalysisCache."""

    @pytest.mark.asyncio
    async def test_hit_and_miss(self):
        cache = InMemoryAnalysisCache()
        digest = compute_content_hash("case")

        assert await cache.get(digest, "chunk") is None
        await cache.set(digest, '{"issues": []}', "chunk")

        assert await cache.get(digest, "chunk") == '{"issues": []}'
        assert await cache.get(digest, "chunk", ["timeline"]) is None
        assert (cache.hits, cache.misses) == (1, 2)

    @pytest.mark.asyncio
    async def test_expiry(self):
        cache = InMemoryAnalysisCache(ttl_seconds=10)
        with patch("casegen.services.analysis_cache.time.monotonic", return_value=100.0):
            await cache.set("h", "analysis", "global")
        with patch("casegen.services.analysis_cache.time.monotonic", return_value=111.0):
            assert await cache.clear_expired() == 1
            assert await cache.get("h", "global") is None

    @pytest.mark.asyncio
    async def test_clear(self):
        cache = InMemoryAnalysisCache()
        await cache.set("h", "analysis", "global")

        await cache.clear()

        assert await cache.get("h", "global") is None


class TestRedisAnalysisCache:
    """Tests for RedisAnalysisCache with a mocked client."""

    @pytest.mark.asyncio
    async def test_get_and_set_use_prefixed_keys(self):
        cache = RedisAnalysisCache(ttl_seconds=600)
        cache._client = MagicMock()
        cache._client.get = AsyncMock(return_value="cached")
        cache._client.setex = AsyncMock()

        await cache.set("h", "analysis", "chunk")
        value = await cache.get("h", "chunk")

        cache._client.setex.assert_awaited_once_with("casegen:redteam:h:chunk", 600, "analysis")
        assert value == "cached"

    def test_client_requires_connect(self):
        with pytest.raises(RuntimeError):
            RedisAnalysisCache().client


class TestCreateAnalysisCache:
    """Tests for create_analysis_cache."""

    @pytest.mark.asyncio
    async def test_in_memory_without_redis_url(self):
        cache = await create_analysis_cache(PipelineSettings())
        assert isinstance(cache, InMemoryAnalysisCache)

    @pytest.mark.asyncio
    async def test_falls_back_when_redis_unreachable(self):
        settings = PipelineSettings(redis_url="redis://localhost:6379")
        with patch.object(RedisAnalysisCache, "connect", AsyncMock(side_effect=redis.ConnectionError("refused"))):
            cache = await create_analysis_cache(settings)

        assert isinstance(cache, InMemoryAnalysisCache)
