"""
Candidate Generator - Per-Category Nearest-Neighbour Retrieval

Runs one vector query per strategy and merges the results into a single
deduplicated pool.

Strategies:
    | Query     | Target    | Reason                  | Weight | Cap |
    |-----------|-----------|-------------------------|--------|-----|
    | needs     | strengths | complementary_needs     | 0.4    | 20  |
    | strengths | needs     | complementary_strengths | 0.4    | 20  |
    | goals     | goals     | shared_goals            | 0.4    | 20  |
    | values    | values    | aligned_values          | 0.2    | 10  |

Merge policy: a candidate found by several strategies keeps the highest
similarity and that strategy's reason. On an exact tie the earlier strategy
in the table wins.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from matchmaker.errors import ErrorClassifier
from matchmaker.middleware.metrics import record_strategy_failure
from matchmaker.schemas.match import MatchReason
from matchmaker.schemas.profile import Category, UserProfile
from matchmaker.services.vector_db import VectorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    user_id: str
    candidate_id: str
    reason: MatchReason
    similarity: float
    weight: float

    @property
    def base_score(self) -> float:
        return self.similarity

    @property
    def weighted_score(self) -> float:
        """Only used to order the pool before truncation."""
        return self.similarity * self.weight


@dataclass(frozen=True)
class Strategy:
    name: str
    query: Category
    target: Category
    reason: MatchReason
    weight: float
    limit: int


STRATEGIES: Sequence[Strategy] = (
    Strategy("needs_to_strengths", Category.NEEDS, Category.STRENGTHS,
             MatchReason.COMPLEMENTARY_NEEDS, 0.4, 20),
    Strategy("strengths_to_needs", Category.STRENGTHS, Category.NEEDS,
             MatchReason.COMPLEMENTARY_STRENGTHS, 0.4, 20),
    Strategy("shared_goals", Category.GOALS, Category.GOALS,
             MatchReason.SHARED_GOALS, 0.4, 20),
    Strategy("aligned_values", Category.VALUES, Category.VALUES,
             MatchReason.ALIGNED_VALUES, 0.2, 10),
)


def merge_candidates(candidates: Iterable[Candidate]) -> Dict[str, Candidate]:
    """Keep the highest-similarity entry per candidate id; first seen wins ties."""
    merged: Dict[str, Candidate] = {}
    for candidate in candidates:
        current = merged.get(candidate.candidate_id)
        if current is None or candidate.similarity > current.similarity:
            merged[candidate.candidate_id] = candidate
    return merged


class CandidateGenerator:
    """
    Attributes:
        store: Vector store holding per-category embeddings
        strategies: Ordered strategies (order decides similarity ties)
        pool_limit: Maximum candidates returned per user
    """

    def __init__(
        self,
        store: VectorStore,
        classifier: Optional[ErrorClassifier] = None,
        strategies: Sequence[Strategy] = STRATEGIES,
        pool_limit: int = 100,
    ) -> None:
        self.store = store
        self.classifier = classifier or ErrorClassifier()
        self.strategies = strategies
        self.pool_limit = pool_limit

    async def _run_strategy(self, profile: UserProfile, strategy: Strategy, excluded: set) -> List[Candidate]:
        stored = await self.store.get(profile.id, strategy.query)
        if stored is None:
            logger.debug(f"No {strategy.query.value} embedding for {profile.id}; skipping {strategy.name}")
            return []

        neighbours = await self.store.nearest(
            stored.vector, strategy.target, strategy.limit, exclude=excluded
        )

        candidates = []
        for neighbour in neighbours:
            if neighbour.user_id in excluded or not math.isfinite(neighbour.similarity):
                continue
            candidates.append(Candidate(
                user_id=profile.id,
                candidate_id=neighbour.user_id,
                reason=strategy.reason,
                similarity=min(1.0, max(0.0, neighbour.similarity)),
                weight=strategy.weight,
            ))
        return candidates

    async def generate(
        self,
        profile: UserProfile,
        exclude: Iterable[str] = (),
        limit: Optional[int] = None,
    ) -> List[Candidate]:
        """
        Build the candidate pool for one user.

        Args:
            profile: The user being matched
            exclude: Ids never to return (active partners); the user is
                always excluded
            limit: Pool size override

        Returns:
            Candidates sorted by similarity descending
        """
        excluded = set(exclude) | {profile.id}
        found: List[Candidate] = []

        for strategy in self.strategies:
            if not profile.items(strategy.query):
                continue
            try:
                found.extend(await self._run_strategy(profile, strategy, excluded))
            except Exception as e:
                error = self.classifier.handle(
                    e, operation="candidate_strategy", strategy=strategy.name, user_id=profile.id
                )
                record_strategy_failure(strategy.name)
                logger.warning(f"Strategy {strategy.name} failed for {profile.id}: {error.message}")

        merged = merge_candidates(found)
        ordered = sorted(
            merged.values(),
            key=lambda c: (-c.similarity, -c.weighted_score, c.candidate_id),
        )
        pool = ordered[: limit or self.pool_limit]
        logger.debug(f"Generated {len(pool)} candidates for {profile.id}")
        return pool
