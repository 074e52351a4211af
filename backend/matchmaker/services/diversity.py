"""
Serendipity Selector - Reserved Exploration Slots

The top of each slate goes to the best-scored candidates; a fraction of the
slots is reserved for candidates whose match reason is not yet on the
slate, so a user whose strongest candidates all come from one strategy still
sees something different.

Slate of `slots` (default: all candidates):
    budget  = ceil(slots * exploration_fraction), at most slots - 1 (0 when slots <= 1)
    keep    = top (slots - budget) by score
    explore = highest-scored remaining candidate with an unseen reason,
              else a random remaining candidate
Everything not on the slate follows in score order as allocator backfill.
"""

import logging
import math
import random
from typing import List, Optional

from matchmaker.services.scoring import ScoredCandidate

logger = logging.getLogger(__name__)


class SerendipitySelector:
    def __init__(self, exploration_fraction: float = 0.15, rng: Optional[random.Random] = None) -> None:
        if not 0.0 <= exploration_fraction < 1.0:
            raise ValueError("exploration_fraction must be in [0, 1)")
        self.exploration_fraction = exploration_fraction
        self.rng = rng or random.Random()

    def exploration_budget(self, slots: int) -> int:
        if slots <= 1:
            return 0
        return min(slots - 1, math.ceil(slots * self.exploration_fraction))

    def select(self, scored: List[ScoredCandidate], slots: Optional[int] = None) -> List[ScoredCandidate]:
        """
        Reorder scored candidates so the first `slots` entries are the slate.

        Returns:
            Slate followed by backfill; same elements as the input
        """
        ordered = sorted(scored, key=lambda s: (-s.score, s.candidate_id))
        if not ordered:
            return []

        slots = len(ordered) if slots is None else max(0, min(slots, len(ordered)))
        budget = self.exploration_budget(slots)

        slate = ordered[: slots - budget]
        remaining = ordered[slots - budget:]

        for _ in range(budget):
            if not remaining:
                break
            seen = {s.reason for s in slate}
            pick = next((s for s in remaining if s.reason not in seen), None)
            if pick is None:
                pick = self.rng.choice(remaining)
            slate.append(pick)
            remaining = [s for s in remaining if s is not pick]

        if budget:
            logger.debug(
                f"Slate reasons: {[s.reason.value for s in slate]} ({budget} exploration slots)"
            )

        return slate + remaining
