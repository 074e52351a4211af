"""
Capacity Allocator - Greedy Weekly-Capped Assignment

Walks the diversified list in order and accepts a candidate unless:
    - it is the user, or already accepted earlier in this run
    - the pair already has an active (pending/accepted) match
    - the candidate has reached the weekly cap
Stops once the user's remaining weekly capacity (or the per-run cap) is
used up.

This is a greedy heuristic rather than an optimal capacitated bipartite
matching: each user is allocated in turn, so earlier users in a run get
first pick of shared capacity.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set

from matchmaker.services.repositories import MatchRepository
from matchmaker.services.scoring import ScoredCandidate

logger = logging.getLogger(__name__)


def week_start(day: date) -> date:
    """Monday of the ISO week containing day."""
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=day.weekday())


def allocate_greedy(
    user_id: str,
    ordered: Sequence[ScoredCandidate],
    weekly_cap: int,
    created_this_week: Dict[str, int],
    active_partners: Iterable[str] = (),
    per_run_cap: Optional[int] = None,
) -> List[ScoredCandidate]:
    """
    Pure greedy pass; no I/O.

    Args:
        user_id: User being allocated
        ordered: Candidates in preference order
        weekly_cap: Maximum matches per user per week
        created_this_week: Matches already created this week, by user id
        active_partners: Users with an active match with user_id
        per_run_cap: Optional extra limit for this run
    """
    remaining = max(0, weekly_cap - created_this_week.get(user_id, 0))
    limit = remaining if per_run_cap is None else min(remaining, max(0, per_run_cap))

    partners: Set[str] = set(active_partners)
    used: Set[str] = set()
    allocated: List[ScoredCandidate] = []

    for scored in ordered:
        if len(allocated) >= limit:
            break

        candidate_id = scored.candidate_id
        if candidate_id == user_id or candidate_id in used or candidate_id in partners:
            continue
        if created_this_week.get(candidate_id, 0) >= weekly_cap:
            continue

        allocated.append(scored)
        used.add(candidate_id)

    return allocated


class CapacityAllocator:
    def __init__(self, matches: MatchRepository, weekly_cap: int = 3) -> None:
        self.matches = matches
        self.weekly_cap = weekly_cap

    async def allocate(
        self,
        user_id: str,
        ordered: Sequence[ScoredCandidate],
        week: date,
        per_run_cap: Optional[int] = None,
    ) -> List[ScoredCandidate]:
        """Load this week's counts and active partners, then allocate greedily."""
        since = datetime.combine(week_start(week), time.min)
        ids = [user_id] + [s.candidate_id for s in ordered]

        counts = await self.matches.count_created_since_many(ids, since)
        partners = await self.matches.active_partner_ids(user_id)

        allocated = allocate_greedy(
            user_id,
            ordered,
            weekly_cap=self.weekly_cap,
            created_this_week=counts,
            active_partners=partners,
            per_run_cap=per_run_cap,
        )
        logger.debug(
            f"Allocated {len(allocated)}/{len(ordered)} candidates for {user_id} "
            f"({counts.get(user_id, 0)} already this week)"
        )
        return allocated
