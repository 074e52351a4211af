"""
Vector Store - Per-Category Profile Embeddings and Nearest-Neighbour Search

One embedding is stored per (user_id, category); upserts overwrite. Each
entry carries the content hash of the embedded text so stale embeddings can
be detected without re-embedding.

Implementations:
    - ChromaVectorStore: ChromaDB persistent client, HNSW index, cosine space
    - InMemoryVectorStore: linear cosine scan; fine for moderate populations,
      O(n) per query so it will not scale to large ones

Usage:
    store = get_vector_store()
    await store.upsert("user-1", Category.NEEDS, vector, text_hash)
    neighbours = await store.nearest(vector, Category.STRENGTHS, limit=20,
                                     exclude={"user-1"})
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

import chromadb
from chromadb.config import Settings as ChromaSettings

from matchmaker.config import get_settings
from matchmaker.middleware.metrics import record_vector_query_latency
from matchmaker.schemas.profile import Category
from matchmaker.services.similarity import cosine_similarity

logger = logging.getLogger(__name__)

COLLECTION_NAME = "profile_embeddings"


@dataclass(frozen=True)
class StoredEmbedding:
    user_id: str
    category: Category
    vector: List[float]
    text_hash: str


@dataclass(frozen=True)
class Neighbor:
    user_id: str
    similarity: float


class VectorStore(Protocol):
    async def upsert(self, user_id: str, category: Category, vector: List[float], text_hash: str) -> None:
        ...

    async def get(self, user_id: str, category: Category) -> Optional[StoredEmbedding]:
        ...

    async def delete(self, user_id: str, category: Category) -> None:
        ...

    async def nearest(
        self,
        vector: List[float],
        category: Category,
        limit: int,
        exclude: Iterable[str] = (),
    ) -> List[Neighbor]:
        ...


def embedding_id(user_id: str, category: Category) -> str:
    return f"{user_id}:{category.value}"


class InMemoryVectorStore:
    """
    Linear-scan vector store; every query compares against every stored
    vector of the category.
    """

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, Category], StoredEmbedding] = {}

    async def upsert(self, user_id: str, category: Category, vector: List[float], text_hash: str) -> None:
        self._entries[(user_id, category)] = StoredEmbedding(
            user_id=user_id,
            category=category,
            vector=list(vector),
            text_hash=text_hash,
        )

    async def get(self, user_id: str, category: Category) -> Optional[StoredEmbedding]:
        return self._entries.get((user_id, category))

    async def delete(self, user_id: str, category: Category) -> None:
        self._entries.pop((user_id, category), None)

    async def nearest(
        self,
        vector: List[float],
        category: Category,
        limit: int,
        exclude: Iterable[str] = (),
    ) -> List[Neighbor]:
        start = time.perf_counter()
        excluded = set(exclude)
        entries = [
            entry for (user_id, cat), entry in self._entries.items()
            if cat == category and user_id not in excluded
        ]
        if not entries or limit <= 0:
            return []

        # cosine_similarity raises ValueError on a dimension mismatch
        sims = [cosine_similarity(vector, entry.vector) for entry in entries]

        ranked = sorted(
            zip(entries, sims),
            key=lambda pair: (-pair[1], pair[0].user_id),
        )
        record_vector_query_latency("nearest", time.perf_counter() - start)
        return [Neighbor(user_id=entry.user_id, similarity=float(sim)) for entry, sim in ranked[:limit]]

    def __len__(self) -> int:
        return len(self._entries)


class ChromaVectorStore:
    """
    ChromaDB-backed vector store.

    Chroma's client is synchronous, so every call runs in the default
    executor to keep the event loop free.

    Attributes:
        client: ChromaDB persistent client
        collection: Profile embeddings collection with cosine HNSW index
    """

    def __init__(self, persist_directory: Optional[str] = None, client: Any = None):
        if client is None:
            Path(persist_directory).mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(
                path=persist_directory,
                settings=ChromaSettings(
                    anonymized_telemetry=False,
                    allow_reset=True,
                )
            )
        self.client = client
        self.collection = self.client.get_or_create_collection(
            name=COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"}
        )
        logger.info(f"ChromaVectorStore initialized ({persist_directory or 'custom client'})")

    async def _run(self, operation: str, fn, *args, **kwargs):
        loop = asyncio.get_event_loop()
        start = time.perf_counter()
        try:
            return await loop.run_in_executor(None, partial(fn, *args, **kwargs))
        except Exception as e:
            logger.error(f"Chroma {operation} failed: {e}")
            raise
        finally:
            record_vector_query_latency(operation, time.perf_counter() - start)

    async def upsert(self, user_id: str, category: Category, vector: List[float], text_hash: str) -> None:
        await self._run(
            "upsert",
            self.collection.upsert,
            ids=[embedding_id(user_id, category)],
            embeddings=[list(vector)],
            metadatas=[{
                "user_id": user_id,
                "category": category.value,
                "text_hash": text_hash,
            }],
        )

    async def get(self, user_id: str, category: Category) -> Optional[StoredEmbedding]:
        result = await self._run(
            "get",
            self.collection.get,
            ids=[embedding_id(user_id, category)],
            include=["embeddings", "metadatas"],
        )
        ids = result.get("ids") or []
        if not ids:
            return None

        embeddings = result.get("embeddings")
        metadata = (result.get("metadatas") or [{}])[0] or {}
        return StoredEmbedding(
            user_id=user_id,
            category=category,
            vector=[float(v) for v in embeddings[0]],
            text_hash=str(metadata.get("text_hash", "")),
        )

    async def delete(self, user_id: str, category: Category) -> None:
        await self._run("delete", self.collection.delete, ids=[embedding_id(user_id, category)])

    async def nearest(
        self,
        vector: List[float],
        category: Category,
        limit: int,
        exclude: Iterable[str] = (),
    ) -> List[Neighbor]:
        if limit <= 0:
            return []

        excluded: Set[str] = set(exclude)
        where: Dict[str, Any] = {"category": category.value}
        if excluded:
            where = {
                "$and": [
                    {"category": category.value},
                    {"user_id": {"$nin": sorted(excluded)}},
                ]
            }

        results = await self._run(
            "nearest",
            self.collection.query,
            query_embeddings=[list(vector)],
            n_results=limit,
            where=where,
            include=["metadatas", "distances"],
        )

        neighbours = []
        if results["ids"] and results["ids"][0]:
            for i, metadata in enumerate(results["metadatas"][0]):
                # Cosine distance → similarity
                similarity = 1.0 - float(results["distances"][0][i])
                neighbours.append(Neighbor(user_id=metadata["user_id"], similarity=similarity))

        return neighbours


# ==================== Factory Function ====================

_vector_store_instance: Optional[VectorStore] = None


def get_vector_store(kind: Optional[str] = None, persist_directory: Optional[str] = None) -> VectorStore:
    """
    Get or create the process-wide vector store.

    Args:
        kind: "chroma" or "memory" (uses settings if not provided)
        persist_directory: Chroma path (uses settings if not provided)
    """
    global _vector_store_instance

    if _vector_store_instance is None:
        settings = get_settings()
        kind = (kind or settings.vector_store).lower()
        if kind == "memory":
            _vector_store_instance = InMemoryVectorStore()
        elif kind == "chroma":
            _vector_store_instance = ChromaVectorStore(
                persist_directory=persist_directory or settings.chroma_persist_directory
            )
        else:
            raise ValueError(f"Unknown vector store: {kind}. Supported: chroma, memory")

    return _vector_store_instance


def reset_vector_store() -> None:
    """Reset the singleton instance (for testing)."""
    global _vector_store_instance
    _vector_store_instance = None
