"""
Feature Scorer - Interpretable Linear Compatibility Model

Each (user, candidate) pair is described by a named feature vector and
scored with fixed, documented weights. The feature vector is stored on the
match for auditing.

Feature Weights:
    | Feature                   | Weight | Range              |
    |---------------------------|--------|--------------------|
    | base_similarity           | +0.30  | 0-1                |
    | need_strength_reciprocity | +0.20  | 0-1 (Jaccard)      |
    | strength_need_reciprocity | +0.20  | 0-1 (Jaccard)      |
    | readiness_compatibility   | -0.10  | 0-1 (|diff| / 10)  |
    | availability_overlap      | +0.10  | 0-1 (min / 10 h)   |
    | location_bonus            | +0.10  | 0 or 1             |
    | role_compatibility        | +0.10  | 0.2, 0.5 or 1      |
    | tag_overlap               | +0.05  | 0-1 (Jaccard)      |
    | reputation_score          | +0.05  | 1.0 placeholder    |
    | novelty_penalty           | -0.10  | 0-1                |

The weighted sum is clamped to [0, 1]; a non-finite sum scores 0.
Readiness and availability default to 5 when the profile leaves them blank.
Readiness is divided by its 0-10 range; shared availability saturates at
AVAILABILITY_SATURATION hours. Both then sit on the same 0-1 scale as the
other features.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional

from matchmaker.schemas.match import MatchReason
from matchmaker.schemas.profile import Category, UserProfile
from matchmaker.services.candidates import Candidate
from matchmaker.services.repositories import MatchRepository, ProfileRepository

logger = logging.getLogger(__name__)

FEATURE_WEIGHTS: Dict[str, float] = {
    "base_similarity": 0.3,
    "need_strength_reciprocity": 0.2,
    "strength_need_reciprocity": 0.2,
    "readiness_compatibility": -0.1,
    "availability_overlap": 0.1,
    "location_bonus": 0.1,
    "role_compatibility": 0.1,
    "tag_overlap": 0.05,
    "reputation_score": 0.05,
    "novelty_penalty": -0.1,
}

DEFAULT_READINESS = 5.0
DEFAULT_AVAILABILITY = 5.0
# Hook for a future reputation subsystem
REPUTATION_PLACEHOLDER = 1.0
NOVELTY_SATURATION = 10
READINESS_RANGE = 10.0
# Weekly hours of shared availability that count as full overlap
AVAILABILITY_SATURATION = 10.0


@dataclass(frozen=True)
class FeatureVector:
    base_similarity: float
    need_strength_reciprocity: float
    strength_need_reciprocity: float
    readiness_compatibility: float
    availability_overlap: float
    location_bonus: float
    role_compatibility: float
    tag_overlap: float
    reputation_score: float
    novelty_penalty: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def _normalized(items: Iterable[str]) -> set:
    return {item.strip().lower() for item in items if item and item.strip()}


def jaccard(items_a: Iterable[str], items_b: Iterable[str]) -> float:
    """Jaccard overlap of case-insensitive, trimmed strings; 0 if either side is empty."""
    set_a = _normalized(items_a)
    set_b = _normalized(items_b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def role_compatibility(role_a: Optional[str], role_b: Optional[str]) -> float:
    a = (role_a or "").strip().lower()
    b = (role_b or "").strip().lower()
    if a == "both" or b == "both":
        return 1.0
    if a and a == b:
        return 0.5
    if {a, b} == {"giver", "seeker"}:
        return 1.0
    return 0.2


def _all_tags(profile: UserProfile) -> List[str]:
    tags: List[str] = []
    for category in Category:
        tags.extend(profile.items(category))
    return tags


def _or_default(value: Optional[float], default: float) -> float:
    return default if value is None else float(value)


def compute_features(
    user: UserProfile,
    candidate: UserProfile,
    base_similarity: float,
    prior_match_count: int = 0,
) -> FeatureVector:
    location_a = (user.location or "").strip().lower()
    location_b = (candidate.location or "").strip().lower()

    return FeatureVector(
        base_similarity=base_similarity,
        need_strength_reciprocity=jaccard(user.needs, candidate.strengths),
        strength_need_reciprocity=jaccard(user.strengths, candidate.needs),
        readiness_compatibility=min(1.0, abs(
            _or_default(user.readiness_level, DEFAULT_READINESS)
            - _or_default(candidate.readiness_level, DEFAULT_READINESS)
        ) / READINESS_RANGE),
        availability_overlap=min(1.0, min(
            _or_default(user.weekly_availability, DEFAULT_AVAILABILITY),
            _or_default(candidate.weekly_availability, DEFAULT_AVAILABILITY),
        ) / AVAILABILITY_SATURATION),
        location_bonus=1.0 if location_a and location_a == location_b else 0.0,
        role_compatibility=role_compatibility(user.role, candidate.role),
        tag_overlap=jaccard(_all_tags(user), _all_tags(candidate)),
        reputation_score=REPUTATION_PLACEHOLDER,
        novelty_penalty=min(1.0, prior_match_count / NOVELTY_SATURATION),
    )


def linear_score(features: FeatureVector, weights: Dict[str, float] = FEATURE_WEIGHTS) -> float:
    values = features.as_dict()
    total = sum(weight * values[name] for name, weight in weights.items())
    if not math.isfinite(total):
        return 0.0
    return min(1.0, max(0.0, total))


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    profile: UserProfile
    features: FeatureVector
    score: float

    @property
    def candidate_id(self) -> str:
        return self.candidate.candidate_id

    @property
    def reason(self) -> MatchReason:
        return self.candidate.reason


class FeatureScorer:
    """
    Scores a candidate pool against the user's profile.

    Candidate profiles and prior pair counts are fetched in two batched
    repository calls per user.
    """

    def __init__(
        self,
        profiles: ProfileRepository,
        matches: MatchRepository,
        weights: Dict[str, float] = FEATURE_WEIGHTS,
    ) -> None:
        self.profiles = profiles
        self.matches = matches
        self.weights = weights

    async def score(self, user: UserProfile, candidates: List[Candidate]) -> List[ScoredCandidate]:
        if not candidates:
            return []

        ids = [c.candidate_id for c in candidates]
        profiles = await self.profiles.get_many(ids)
        prior_counts = await self.matches.count_between_many(user.id, ids)

        scored: List[ScoredCandidate] = []
        for candidate in candidates:
            profile = profiles.get(candidate.candidate_id)
            if profile is None or not (profile.is_active and profile.onboarding_completed):
                logger.debug(f"Skipping candidate {candidate.candidate_id}: no eligible profile")
                continue

            features = compute_features(
                user, profile, candidate.similarity, prior_counts.get(candidate.candidate_id, 0)
            )
            scored.append(ScoredCandidate(
                candidate=candidate,
                profile=profile,
                features=features,
                score=linear_score(features, self.weights),
            ))

        scored.sort(key=lambda s: (-s.score, -s.candidate.similarity, s.candidate_id))
        return scored
