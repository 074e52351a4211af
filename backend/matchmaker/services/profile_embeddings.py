"""
Profile Embedding Sync - Lazy Per-Category Regeneration

Profile edits do not touch the vector store directly. Before a user is
matched, sync_profile() compares the content hash of each category's text
with the hash stored next to the embedding and only re-embeds what changed.

Per Category:
    | Profile text | Stored embedding      | Action    |
    |--------------|-----------------------|-----------|
    | empty        | present               | removed   |
    | empty        | absent                | (nothing) |
    | non-empty    | same hash             | unchanged |
    | non-empty    | missing / other hash  | refreshed |

Changed categories are embedded with one batch_generate() call. A failing
category is reported in `failed` and never blocks the others.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from matchmaker.errors import ErrorClassifier
from matchmaker.schemas.profile import Category, EmbeddingRefreshResponse, UserProfile
from matchmaker.services.cache import hash_content
from matchmaker.services.embeddings import EmbeddingClient
from matchmaker.services.vector_db import VectorStore

logger = logging.getLogger(__name__)


class ProfileEmbeddingService:
    def __init__(
        self,
        client: EmbeddingClient,
        store: VectorStore,
        classifier: Optional[ErrorClassifier] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.classifier = classifier or client.classifier

    def _record_failure(self, result: EmbeddingRefreshResponse, category: Category, error: Exception) -> None:
        classified = self.classifier.handle(
            error, operation="sync_profile", user_id=result.user_id, category=category.value
        )
        logger.warning(
            f"Embedding sync failed for {result.user_id}/{category.value}: {classified.message}"
        )
        result.failed.append(category)

    async def sync_profile(self, profile: UserProfile, force: bool = False) -> EmbeddingRefreshResponse:
        """
        Bring the stored embeddings for one profile up to date.

        Args:
            profile: Current profile
            force: Re-embed every non-empty category regardless of hash
        """
        result = EmbeddingRefreshResponse(
            user_id=profile.id, refreshed=[], unchanged=[], removed=[], failed=[]
        )
        pending: List[Tuple[Category, str, str]] = []

        for category in Category:
            text = profile.category_text(category)
            try:
                stored = await self.store.get(profile.id, category)

                if not text:
                    if stored is not None:
                        await self.store.delete(profile.id, category)
                        result.removed.append(category)
                    continue

                text_hash = hash_content(text)
                if not force and stored is not None and stored.text_hash == text_hash:
                    result.unchanged.append(category)
                else:
                    pending.append((category, text, text_hash))
            except Exception as e:
                self._record_failure(result, category, e)

        if pending:
            generated = await self.client.batch_generate([text for _, text, _ in pending])
            for (category, _, text_hash), item in zip(pending, generated):
                if not item.ok:
                    # Already reported by batch_generate
                    logger.warning(
                        f"Embedding sync failed for {profile.id}/{category.value}: {item.error.message}"
                    )
                    result.failed.append(category)
                    continue
                try:
                    await self.store.upsert(profile.id, category, item.vector, text_hash)
                    result.refreshed.append(category)
                except Exception as e:
                    self._record_failure(result, category, e)

        if result.refreshed or result.removed:
            logger.info(
                f"Synced embeddings for {profile.id}: refreshed={[c.value for c in result.refreshed]} "
                f"removed={[c.value for c in result.removed]}"
            )

        return result

    async def invalidate(self, user_id: str, categories: Iterable[Category] = tuple(Category)) -> None:
        """Drop stored embeddings so the next sync regenerates them."""
        for category in categories:
            await self.store.delete(user_id, category)
