"""
Redis Embedding Cache

Caches generated embeddings by content hash so identical profile text is
never sent to the embedding service twice within the TTL.

Cache Key Pattern:
    - emb:{model}:{content_hash} - Embedding vectors (24hr TTL)

Redis being unavailable is never fatal: lookups return None and writes
return False.

Usage:
    cache = EmbeddingCache("redis://localhost:6379", model="bge-base")
    vector = await cache.get_embedding(text)
    if vector is None:
        vector = await client.generate(text)
        await cache.set_embedding(text, vector)
"""

import json
import hashlib
import logging
from typing import Any, List, Optional

import redis.asyncio as redis

from matchmaker.middleware.metrics import record_cache_hit, record_cache_miss

logger = logging.getLogger(__name__)

EMBEDDING_TTL_SECONDS = 86400  # 24 hours


def hash_content(*args: Any) -> str:
    """
    Generate a 16-character hex hash from content.

    Handles strings, dicts, lists, and other JSON-serializable types.
    Dict keys are sorted for consistent hashing.
    """
    content = json.dumps(args, sort_keys=True, default=str)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


class EmbeddingCache:
    """
    Redis-backed embedding cache with graceful degradation.

    Attributes:
        redis_url: Redis connection URL
        model: Model name, part of the key so model changes never collide
        stats: Hit/miss counters for this instance
    """

    def __init__(self, redis_url: str, model: str = "default", ttl: int = EMBEDDING_TTL_SECONDS):
        self.redis_url = redis_url
        self.model = model
        self.ttl = ttl
        self.redis: Optional[redis.Redis] = None
        self.stats = {"hits": 0, "misses": 0}

    async def _ensure_connected(self) -> Optional[redis.Redis]:
        if self.redis is None:
            try:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )
            except Exception as e:
                logger.warning(f"Failed to connect to Redis: {e}")
                return None
        return self.redis

    def _key(self, text: str) -> str:
        return f"emb:{self.model}:{hash_content(text)}"

    def _miss(self) -> None:
        self.stats["misses"] += 1
        record_cache_miss()

    async def get_embedding(self, text: str) -> Optional[List[float]]:
        """Return the cached vector for text, or None on miss/error."""
        try:
            client = await self._ensure_connected()
            if not client:
                self._miss()
                return None

            cached = await client.get(self._key(text))
            if cached:
                self.stats["hits"] += 1
                record_cache_hit()
                return json.loads(cached)

            self._miss()
            return None

        except Exception as e:
            logger.warning(f"Redis get error (embedding cache): {e}")
            self._miss()
            return None

    async def set_embedding(self, text: str, embedding: List[float]) -> bool:
        """Cache a vector; returns False when Redis is unavailable."""
        try:
            client = await self._ensure_connected()
            if not client:
                return False

            await client.setex(self._key(text), self.ttl, json.dumps(embedding))
            return True

        except Exception as e:
            logger.warning(f"Redis set error (embedding cache): {e}")
            return False

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.close()
            self.redis = None
