"""
Embedding Client - Validated, Retried Text Vectorization

Wraps an EmbeddingProvider with the invariants the matching pipeline relies
on:

    1. Input must be a non-blank string; violations raise a validation
       MatchingError before any network call
    2. Text is whitespace-collapsed and truncated to the model limit
    3. Retryable failures (warming up, rate limited, 5xx, network) are
       retried with exponential backoff; others surface immediately
    4. Responses must have the configured dimension and only finite
       values; violations are hard, non-retried failures
    5. Vectors are unit-normalized so cosine similarity is a dot product

Key Functions:
    - EmbeddingClient.generate(): Single text → unit vector
    - EmbeddingClient.batch_generate(): Sequential, failure-isolated batch
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from matchmaker.errors import (
    ErrorClassifier,
    ErrorKind,
    MatchingError,
    Severity,
    validate_embedding_input,
)
from matchmaker.middleware.metrics import (
    record_embedding_failure,
    record_embedding_latency,
    record_embedding_retry,
)
from matchmaker.services.cache import EmbeddingCache
from matchmaker.services.embedding_providers import EmbeddingProvider
from matchmaker.services.retry import RetryPolicy
from matchmaker.services.similarity import normalize

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 512


@dataclass
class BatchEmbeddingResult:
    """Outcome for one item of batch_generate()."""
    index: int
    text: Any
    vector: Optional[List[float]] = None
    error: Optional[MatchingError] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


def _invalid_vector(message: str) -> MatchingError:
    return MatchingError(
        message,
        kind=ErrorKind.AI_SERVICE,
        severity=Severity.HIGH,
        context={"operation": "generate_embedding"},
        user_message="AI service returned invalid data. Please try again.",
        retryable=False,
    )


class EmbeddingClient:
    """
    Attributes:
        provider: Backend performing the single embedding call
        dimensions: Required vector length
        max_chars: Truncation limit applied after whitespace cleanup
        retry_policy: Backoff policy for retryable failures
        cache: Optional Redis cache keyed by cleaned text
        batch_delay: Seconds between sequential batch items

    Example:
        >>> client = EmbeddingClient(HashingEmbeddingProvider(768), dimensions=768)
        >>> vector = await client.generate("UX research")
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        dimensions: Optional[int] = None,
        max_chars: int = DEFAULT_MAX_CHARS,
        retry_policy: Optional[RetryPolicy] = None,
        cache: Optional[EmbeddingCache] = None,
        classifier: Optional[ErrorClassifier] = None,
        batch_delay: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.dimensions = dimensions or provider.dimensions
        self.max_chars = max_chars
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache = cache
        self.classifier = classifier or ErrorClassifier()
        self.batch_delay = batch_delay
        self._sleep = sleep

    def prepare_text(self, text: Any) -> str:
        """Validate, collapse whitespace and truncate."""
        stripped = validate_embedding_input(text)
        return " ".join(stripped.split())[: self.max_chars]

    def _check_vector(self, vector: Any) -> List[float]:
        if not isinstance(vector, (list, tuple)):
            raise _invalid_vector("Embedding is not a list")

        if len(vector) != self.dimensions:
            raise _invalid_vector(
                f"Invalid embedding dimensions: expected {self.dimensions}, got {len(vector)}"
            )

        values = []
        for value in vector:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise _invalid_vector("Embedding contains invalid numeric values")
            values.append(float(value))
        return values

    async def _embed_once(self, text: str) -> List[float]:
        raw = await self.provider.embed(text)
        return self._check_vector(raw)

    def _on_retry(self, attempt: int, error: MatchingError) -> None:
        record_embedding_retry(error.kind.value)

    async def generate(self, text: Any) -> List[float]:
        """
        Convert text into a unit-normalized embedding.

        Raises:
            MatchingError: validation (bad input), ai_service, rate_limit,
                network or authentication kinds after retries are exhausted
        """
        clean_text = self.prepare_text(text)

        if self.cache is not None:
            cached = await self.cache.get_embedding(clean_text)
            if cached is not None and len(cached) == self.dimensions:
                return cached

        start = time.perf_counter()
        try:
            vector = await self.retry_policy.run(
                self._embed_once,
                clean_text,
                classifier=self.classifier,
                on_retry=self._on_retry,
            )
        except MatchingError as e:
            record_embedding_failure(e.kind.value)
            raise
        finally:
            record_embedding_latency(self.provider.name, time.perf_counter() - start)

        unit = normalize(vector)
        if not any(unit):
            raise _invalid_vector("Embedding service returned a zero vector")

        if self.cache is not None:
            await self.cache.set_embedding(clean_text, unit)

        return unit

    async def batch_generate(self, texts: List[Any]) -> List[BatchEmbeddingResult]:
        """
        Embed texts one at a time with a short pause between calls.

        A failing item is recorded on its result and the batch continues.

        Returns:
            One BatchEmbeddingResult per input, same order
        """
        results: List[BatchEmbeddingResult] = []

        for index, text in enumerate(texts):
            if index > 0 and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

            try:
                vector = await self.generate(text)
                results.append(BatchEmbeddingResult(index=index, text=text, vector=vector))
            except Exception as e:
                error = self.classifier.handle(e, operation="batch_generate", index=index)
                logger.warning(f"Batch embedding item {index} failed: {error.message}")
                results.append(BatchEmbeddingResult(index=index, text=text, error=error))

        return results
