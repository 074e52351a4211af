"""
Tests for lazy per-category embedding sync.

Run with: pytest backend/tests/test_profile_embeddings.py -v
"""
import pytest
from unittest.mock import AsyncMock

from matchmaker.schemas import Category
from matchmaker.services.embedding_providers import HashingEmbeddingProvider
from matchmaker.services.embeddings import EmbeddingClient
from matchmaker.services.profile_embeddings import ProfileEmbeddingService
from matchmaker.services.retry import RetryPolicy
from matchmaker.services.vector_db import InMemoryVectorStore


class BrokenTextProvider(HashingEmbeddingProvider):
    """Returns a wrong-sized vector for any text mentioning 'broken'."""

    async def embed(self, text):
        if "broken" in text:
            return [1.0, 2.0]
        return await super().embed(text)


class TestSyncProfile:
    @pytest.mark.asyncio
    async def test_first_sync_refreshes_non_empty_categories(self, embedding_client, profile_factory):
        store = InMemoryVectorStore()
        service = ProfileEmbeddingService(embedding_client, store)
        profile = profile_factory("a", needs=["funding"], goals=["launch"])

        result = await service.sync_profile(profile)

        assert result.refreshed == [Category.NEEDS, Category.GOALS]
        assert result.unchanged == [] and result.removed == [] and result.failed == []
        assert len(store) == 2
        assert await store.get("a", Category.STRENGTHS) is None

    @pytest.mark.asyncio
    async def test_unchanged_text_is_not_reembedded(self, embedding_client, profile_factory):
        store = InMemoryVectorStore()
        service = ProfileEmbeddingService(embedding_client, store)
        profile = profile_factory("a", needs=["funding"], goals=["launch"])
        await service.sync_profile(profile)

        edited = profile.model_copy(update={"goals": ["launch", "hire"]})
        result = await service.sync_profile(edited)

        assert result.unchanged == [Category.NEEDS]
        assert result.refreshed == [Category.GOALS]

    @pytest.mark.asyncio
    async def test_cleared_category_is_removed(self, embedding_client, profile_factory):
        store = InMemoryVectorStore()
        service = ProfileEmbeddingService(embedding_client, store)
        await service.sync_profile(profile_factory("a", needs=["funding"], goals=["launch"]))

        result = await service.sync_profile(profile_factory("a", needs=["  "], goals=["launch"]))

        assert result.removed == [Category.NEEDS]
        assert await store.get("a", Category.NEEDS) is None
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_force_refreshes_everything(self, embedding_client, profile_factory):
        store = InMemoryVectorStore()
        service = ProfileEmbeddingService(embedding_client, store)
        profile = profile_factory("a", needs=["funding"], values=["honesty"])
        await service.sync_profile(profile)

        result = await service.sync_profile(profile, force=True)

        assert result.refreshed == [Category.NEEDS, Category.VALUES]
        assert result.unchanged == []

    @pytest.mark.asyncio
    async def test_failed_category_does_not_block_others(self, classifier, error_sink, profile_factory):
        client = EmbeddingClient(
            BrokenTextProvider(64),
            dimensions=64,
            retry_policy=RetryPolicy(max_attempts=1, jitter=0),
            classifier=classifier,
            batch_delay=0,
        )
        store = InMemoryVectorStore()
        service = ProfileEmbeddingService(client, store)

        result = await service.sync_profile(
            profile_factory("a", needs=["broken pipeline"], goals=["launch"])
        )

        assert result.failed == [Category.NEEDS]
        assert result.refreshed == [Category.GOALS]
        assert await store.get("a", Category.NEEDS) is None
        assert len(error_sink.reports) == 1
        assert error_sink.reports[0].kind.value == "ai_service"

    @pytest.mark.asyncio
    async def test_store_failure_is_recorded(self, embedding_client, classifier, error_sink, profile_factory):
        store = AsyncMock()
        store.get = AsyncMock(side_effect=ConnectionError("chroma unreachable"))
        service = ProfileEmbeddingService(embedding_client, store, classifier)

        result = await service.sync_profile(profile_factory("a", needs=["funding"]))

        assert Category.NEEDS in result.failed
        assert result.refreshed == []
        assert error_sink.reports[0].kind.value == "network"
        assert error_sink.reports[0].context["user_id"] == "a"


class TestInvalidate:
    @pytest.mark.asyncio
    async def test_invalidate_forces_regeneration(self, embedding_client, profile_factory):
        store = InMemoryVectorStore()
        service = ProfileEmbeddingService(embedding_client, store)
        profile = profile_factory("a", needs=["funding"], goals=["launch"])
        await service.sync_profile(profile)

        await service.invalidate("a", [Category.GOALS])
        result = await service.sync_profile(profile)

        assert result.refreshed == [Category.GOALS]
        assert result.unchanged == [Category.NEEDS]
