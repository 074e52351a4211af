"""
Embedding Providers - Interchangeable Text-to-Vector Backends

This module provides a unified interface for the embedding service. Each
provider performs exactly one call per embed() and translates transport and
HTTP failures into classified MatchingErrors; retries, validation and
dimension checks live in EmbeddingClient.

Provider Comparison:
    | Provider     | Model                       | Dimensions | Network |
    |--------------|-----------------------------|------------|---------|
    | huggingface  | BAAI/bge-base-en-v1.5       | 768        | yes     |
    | openai       | text-embedding-3-small      | 1536       | yes     |
    | hashing      | token hashing (no model)    | any        | no      |

Status Mapping (HuggingFace Inference API):
    - 503: model warming up       → ai_service, retryable
    - 429: rate limited           → rate_limit, retryable
    - 401/403: rejected key       → authentication, critical
    - other 5xx                   → ai_service, retryable
    - other 4xx                   → ai_service, not retryable
"""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from matchmaker.errors import ErrorKind, MatchingError, Severity

logger = logging.getLogger(__name__)


MODEL_DIMENSIONS: Dict[str, int] = {
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "sentence-transformers/all-mpnet-base-v2": 768,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Protocol defining the embedding provider interface.

    All embedding providers must implement:
    - name: Provider label used in metrics
    - dimensions: Expected embedding vector size
    - embed(): Single text to raw embedding
    """

    name: str

    @property
    def dimensions(self) -> int:
        ...

    async def embed(self, text: str) -> List[float]:
        ...


def _config_error(message: str) -> MatchingError:
    return MatchingError(
        message,
        kind=ErrorKind.AI_SERVICE,
        severity=Severity.CRITICAL,
        context={"operation": "embed"},
        user_message="AI service configuration error. Please contact support.",
        retryable=False,
    )


def _invalid_payload(message: str) -> MatchingError:
    return MatchingError(
        message,
        kind=ErrorKind.AI_SERVICE,
        severity=Severity.HIGH,
        context={"operation": "embed"},
        user_message="AI service returned unexpected data. Please try again.",
        retryable=False,
    )


def error_for_status(status_code: int, detail: str = "") -> MatchingError:
    """Translate an embedding service HTTP status into a MatchingError."""
    context = {"operation": "embed", "status_code": status_code}

    if status_code == 503:
        return MatchingError(
            f"Model is loading: {detail}".strip(),
            kind=ErrorKind.AI_SERVICE,
            severity=Severity.MEDIUM,
            context=context,
            user_message="Our AI is warming up. Please try again in a moment.",
            retryable=True,
        )

    if status_code == 429:
        return MatchingError(
            "Rate limit exceeded",
            kind=ErrorKind.RATE_LIMIT,
            severity=Severity.MEDIUM,
            context=context,
            retryable=True,
        )

    if status_code in (401, 403):
        return MatchingError(
            f"Embedding service rejected credentials ({status_code})",
            kind=ErrorKind.AUTHENTICATION,
            severity=Severity.CRITICAL,
            context=context,
            user_message="AI service configuration error. Please contact support.",
            retryable=False,
        )

    return MatchingError(
        f"Embedding generation failed: {status_code} {detail}".strip(),
        kind=ErrorKind.AI_SERVICE,
        severity=Severity.HIGH,
        context=context,
        user_message="AI service temporarily unavailable. Please try again.",
        retryable=status_code >= 500,
    )


def parse_embedding_payload(data: Any) -> List[float]:
    """
    Extract a single vector from the response formats the service returns.

    Accepted shapes: [..], [[..]], {"embeddings": [[..]]}, {"embedding": [..]}
    """
    vector: Any = None

    if isinstance(data, list) and data:
        vector = data[0] if isinstance(data[0], list) else data
    elif isinstance(data, dict):
        if isinstance(data.get("embeddings"), list) and data["embeddings"]:
            vector = data["embeddings"][0]
        elif isinstance(data.get("embedding"), list):
            vector = data["embedding"]

    if not isinstance(vector, list) or not vector:
        raise _invalid_payload("Invalid embedding response format")

    # Token-level output ([[[..]]]) is not a sentence embedding
    if isinstance(vector[0], list):
        raise _invalid_payload("Embedding response is nested too deeply")

    return vector


class HuggingFaceInferenceProvider:
    """
    HuggingFace Inference API provider (feature-extraction pipeline).

    Attributes:
        api_url: Model endpoint URL
        api_key: HuggingFace API token
        model: Model name (used for dimension lookup)

    Example:
        >>> provider = HuggingFaceInferenceProvider(api_key="hf_...")
        >>> vector = await provider.embed("UX research")
    """

    name = "huggingface"

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api-inference.huggingface.co/models/BAAI/bge-base-en-v1.5",
        model: str = "BAAI/bge-base-en-v1.5",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def dimensions(self) -> int:
        return MODEL_DIMENSIONS.get(self.model, 768)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def embed(self, text: str) -> List[float]:
        if not self.api_key:
            raise _config_error("HUGGINGFACE_API_KEY is required")

        client = self._get_client()
        try:
            response = await client.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "inputs": text,
                    "options": {"wait_for_model": False},
                    "normalize": True,
                },
            )
        except httpx.TimeoutException as e:
            raise MatchingError(
                f"Embedding request timed out: {e}",
                kind=ErrorKind.NETWORK,
                severity=Severity.MEDIUM,
                context={"operation": "embed"},
                retryable=True,
            ) from e
        except httpx.TransportError as e:
            raise MatchingError(
                f"Embedding request failed: {e}",
                kind=ErrorKind.NETWORK,
                severity=Severity.MEDIUM,
                context={"operation": "embed"},
                retryable=True,
            ) from e

        if response.status_code >= 400:
            raise error_for_status(response.status_code, response.reason_phrase)

        try:
            data = response.json()
        except ValueError as e:
            raise _invalid_payload("Embedding response is not JSON") from e

        return parse_embedding_payload(data)


class OpenAIEmbeddingProvider:
    """
    OpenAI API embeddings provider.

    Maps the SDK's exception hierarchy onto the same error kinds as the
    HuggingFace provider. SDK-level retries are disabled so RetryPolicy
    owns the retry budget.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: Optional[int] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._dimensions = dimensions
        self._client = None

    @property
    def dimensions(self) -> int:
        return self._dimensions or MODEL_DIMENSIONS.get(self.model, 1536)

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    async def embed(self, text: str) -> List[float]:
        import openai

        if not self.api_key:
            raise _config_error("OPENAI_API_KEY is required")

        kwargs: Dict[str, Any] = {"input": [text], "model": self.model}
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions

        client = self._get_client()
        try:
            response = await client.embeddings.create(**kwargs)
        except openai.APIConnectionError as e:
            # Also covers APITimeoutError
            raise MatchingError(
                f"OpenAI connection failed: {e}",
                kind=ErrorKind.NETWORK,
                severity=Severity.MEDIUM,
                context={"operation": "embed"},
                retryable=True,
            ) from e
        except openai.APIStatusError as e:
            raise error_for_status(e.status_code, e.message) from e

        return list(response.data[0].embedding)


_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


class HashingEmbeddingProvider:
    """
    Deterministic bag-of-words embeddings via the hashing trick.

    Each lower-cased token adds 1.0 to the dimension selected by its hash,
    so texts sharing vocabulary have positive cosine similarity and
    identical texts produce identical vectors. No network access; used
    for tests and offline runs.
    """

    name = "hashing"

    def __init__(self, dimensions: int = 768) -> None:
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _text_to_embedding(self, text: str) -> List[float]:
        embedding = [0.0] * self._dimensions
        for token in _TOKEN_PATTERN.findall(text.lower()):
            digest = hashlib.md5(token.encode()).hexdigest()
            embedding[int(digest, 16) % self._dimensions] += 1.0
        return embedding

    async def embed(self, text: str) -> List[float]:
        return self._text_to_embedding(text)


def get_embedding_provider(
    provider_name: str = "huggingface",
    api_key: Optional[str] = None,
    model_name: Optional[str] = None,
    **kwargs: Any
) -> EmbeddingProvider:
    """
    Factory function to create embedding provider instances.

    Args:
        provider_name: "huggingface", "openai" or "hashing"
        api_key: API key for remote providers
        model_name: Optional model name override
        **kwargs: Provider-specific options (api_url, timeout, dimensions)

    Raises:
        ValueError: If provider is unknown
    """
    provider_name = provider_name.lower()

    if provider_name == "huggingface":
        options = {k: v for k, v in kwargs.items() if k in ("api_url", "timeout")}
        return HuggingFaceInferenceProvider(
            api_key=api_key or "",
            model=model_name or "BAAI/bge-base-en-v1.5",
            **options,
        )

    elif provider_name == "openai":
        return OpenAIEmbeddingProvider(
            api_key=api_key or "",
            model=model_name or "text-embedding-3-small",
            dimensions=kwargs.get("dimensions"),
        )

    elif provider_name == "hashing":
        return HashingEmbeddingProvider(dimensions=kwargs.get("dimensions", 768))

    else:
        raise ValueError(
            f"Unknown embedding provider: {provider_name}. "
            f"Supported: huggingface, openai, hashing"
        )
