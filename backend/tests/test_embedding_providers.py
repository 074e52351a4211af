"""
Tests for embedding providers.

Tests cover:
- HTTP status → error kind mapping
- Response payload parsing
- HuggingFace provider over a mocked transport
- OpenAI provider with a mocked SDK client
- Hashing provider and the provider factory

Run with: pytest backend/tests/test_embedding_providers.py -v
"""
import httpx
import pytest
from unittest.mock import AsyncMock, Mock

from matchmaker.errors import ErrorKind, MatchingError, Severity


def hf_provider(handler, api_key="hf_test"):
    from matchmaker.services.embedding_providers import HuggingFaceInferenceProvider

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HuggingFaceInferenceProvider(api_key=api_key, api_url="https://hf.test/model", client=client)


class TestErrorForStatus:
    """Tests for embedding service status mapping."""

    def test_503_is_retryable_warmup(self):
        from matchmaker.services.embedding_providers import error_for_status

        error = error_for_status(503)
        assert error.kind == ErrorKind.AI_SERVICE
        assert error.retryable is True
        assert "warming up" in error.user_message

    def test_429_is_rate_limit(self):
        from matchmaker.services.embedding_providers import error_for_status

        error = error_for_status(429)
        assert error.kind == ErrorKind.RATE_LIMIT
        assert error.retryable is True

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failures_are_critical(self, status):
        from matchmaker.services.embedding_providers import error_for_status

        error = error_for_status(status)
        assert error.kind == ErrorKind.AUTHENTICATION
        assert error.severity == Severity.CRITICAL
        assert error.retryable is False

    def test_other_5xx_retryable_4xx_not(self):
        from matchmaker.services.embedding_providers import error_for_status

        assert error_for_status(502).retryable is True
        assert error_for_status(400).retryable is False
        assert error_for_status(400).kind == ErrorKind.AI_SERVICE


class TestParseEmbeddingPayload:
    """Tests for accepted response shapes."""

    @pytest.mark.parametrize("payload", [
        [0.1, 0.2],
        [[0.1, 0.2]],
        {"embeddings": [[0.1, 0.2]]},
        {"embedding": [0.1, 0.2]},
    ])
    def test_accepted_shapes(self, payload):
        from matchmaker.services.embedding_providers import parse_embedding_payload

        assert parse_embedding_payload(payload) == [0.1, 0.2]

    @pytest.mark.parametrize("payload", [[], {}, {"data": []}, "text", [[[0.1, 0.2]]]])
    def test_rejected_shapes(self, payload):
        from matchmaker.services.embedding_providers import parse_embedding_payload

        with pytest.raises(MatchingError) as exc_info:
            parse_embedding_payload(payload)
        assert exc_info.value.kind == ErrorKind.AI_SERVICE
        assert exc_info.value.retryable is False


class TestHuggingFaceInferenceProvider:
    """Tests for the HuggingFace Inference API provider."""

    @pytest.mark.asyncio
    async def test_embed_posts_text(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[[0.5, 0.5, 0.0]])

        provider = hf_provider(handler)
        vector = await provider.embed("UX research")

        assert vector == [0.5, 0.5, 0.0]
        assert requests[0].headers["Authorization"] == "Bearer hf_test"
        assert b"UX research" in requests[0].content
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_warming_up_status(self):
        provider = hf_provider(lambda request: httpx.Response(503, json={"error": "loading"}))

        with pytest.raises(MatchingError) as exc_info:
            await provider.embed("text")

        assert exc_info.value.retryable is True
        assert exc_info.value.kind == ErrorKind.AI_SERVICE

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        provider = hf_provider(lambda request: httpx.Response(401))

        with pytest.raises(MatchingError) as exc_info:
            await provider.embed("text")

        assert exc_info.value.kind == ErrorKind.AUTHENTICATION

    @pytest.mark.asyncio
    async def test_transport_error_is_network(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = hf_provider(handler)

        with pytest.raises(MatchingError) as exc_info:
            await provider.embed("text")

        assert exc_info.value.kind == ErrorKind.NETWORK
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_missing_key_is_configuration_error(self):
        handler = Mock()
        provider = hf_provider(handler, api_key="")

        with pytest.raises(MatchingError) as exc_info:
            await provider.embed("text")

        assert exc_info.value.severity == Severity.CRITICAL
        assert exc_info.value.retryable is False
        handler.assert_not_called()

    def test_dimensions_from_model(self):
        from matchmaker.services.embedding_providers import HuggingFaceInferenceProvider

        assert HuggingFaceInferenceProvider(api_key="k").dimensions == 768
        assert HuggingFaceInferenceProvider(api_key="k", model="BAAI/bge-large-en-v1.5").dimensions == 1024


class TestOpenAIEmbeddingProvider:
    """Tests for the OpenAI provider."""

    @pytest.mark.asyncio
    async def test_embed_returns_vector(self):
        from matchmaker.services.embedding_providers import OpenAIEmbeddingProvider

        provider = OpenAIEmbeddingProvider(api_key="sk-test", dimensions=3)
        mock_response = Mock()
        mock_response.data = [Mock(embedding=[0.1, 0.2, 0.3])]
        provider._client = Mock()
        provider._client.embeddings.create = AsyncMock(return_value=mock_response)

        assert await provider.embed("text") == [0.1, 0.2, 0.3]
        kwargs = provider._client.embeddings.create.await_args.kwargs
        assert kwargs["dimensions"] == 3
        assert kwargs["input"] == ["text"]

    @pytest.mark.asyncio
    async def test_status_error_mapped(self):
        import openai
        from matchmaker.services.embedding_providers import OpenAIEmbeddingProvider

        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        response = httpx.Response(429, request=request)
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        provider._client = Mock()
        provider._client.embeddings.create = AsyncMock(
            side_effect=openai.APIStatusError("rate limited", response=response, body=None)
        )

        with pytest.raises(MatchingError) as exc_info:
            await provider.embed("text")

        assert exc_info.value.kind == ErrorKind.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_connection_error_is_network(self):
        import openai
        from matchmaker.services.embedding_providers import OpenAIEmbeddingProvider

        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        provider._client = Mock()
        provider._client.embeddings.create = AsyncMock(
            side_effect=openai.APIConnectionError(request=request)
        )

        with pytest.raises(MatchingError) as exc_info:
            await provider.embed("text")

        assert exc_info.value.kind == ErrorKind.NETWORK


class TestHashingProviderAndFactory:
    """Tests for the offline provider and get_embedding_provider()."""

    @pytest.mark.asyncio
    async def test_hashing_is_deterministic(self):
        from matchmaker.services.embedding_providers import HashingEmbeddingProvider

        provider = HashingEmbeddingProvider(dimensions=64)
        first = await provider.embed("UX research")
        second = await provider.embed("ux   RESEARCH")

        assert len(first) == 64
        assert first == second
        assert sum(first) == 2.0

    def test_factory_builds_each_provider(self):
        from matchmaker.services.embedding_providers import (
            HashingEmbeddingProvider,
            HuggingFaceInferenceProvider,
            OpenAIEmbeddingProvider,
            get_embedding_provider,
        )

        assert isinstance(get_embedding_provider("huggingface", api_key="k"), HuggingFaceInferenceProvider)
        assert isinstance(get_embedding_provider("OpenAI", api_key="k"), OpenAIEmbeddingProvider)
        hashing = get_embedding_provider("hashing", dimensions=32)
        assert isinstance(hashing, HashingEmbeddingProvider)
        assert hashing.dimensions == 32

    def test_factory_rejects_unknown(self):
        from matchmaker.services.embedding_providers import get_embedding_provider

        with pytest.raises(ValueError, match="Unknown embedding provider"):
            get_embedding_provider("cohere")
