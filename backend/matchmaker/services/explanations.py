"""
Explanation Generator - Evidence, Narrative and Confidence per Match

Explanations are template-based and deterministic: the same profiles,
reason and features always produce the same text.

Evidence:
    - your_need: the user's first need
    - their_strength: the candidate's first strength
    - shared_goal: first goal both list, else the user's first goal
    - shared_value: first value both list, else the user's first value

Confidence is the base similarity clamped to [0.1, 0.95].
"""

from typing import List, Optional

from matchmaker.schemas.match import Evidence, MatchExplanation, MatchReason
from matchmaker.schemas.profile import Category, UserProfile
from matchmaker.services.scoring import FeatureVector

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95

NO_NEED = "No specific need mentioned"
NO_STRENGTH = "No specific strength mentioned"
NO_GOAL = "No shared goals identified"
NO_VALUE = "No shared values identified"


def _first_shared(mine: List[str], theirs: List[str]) -> Optional[str]:
    their_keys = {item.lower() for item in theirs}
    return next((item for item in mine if item.lower() in their_keys), None)


def _first(items: List[str]) -> Optional[str]:
    return items[0] if items else None


class ExplanationGenerator:
    def build_evidence(self, user: UserProfile, candidate: UserProfile) -> Evidence:
        user_goals = user.items(Category.GOALS)
        user_values = user.items(Category.VALUES)

        return Evidence(
            your_need=_first(user.items(Category.NEEDS)) or NO_NEED,
            their_strength=_first(candidate.items(Category.STRENGTHS)) or NO_STRENGTH,
            shared_goal=(
                _first_shared(user_goals, candidate.items(Category.GOALS))
                or _first(user_goals)
                or NO_GOAL
            ),
            shared_value=(
                _first_shared(user_values, candidate.items(Category.VALUES))
                or _first(user_values)
                or NO_VALUE
            ),
        )

    def narrative(
        self,
        user: UserProfile,
        candidate: UserProfile,
        reason: MatchReason,
        features: FeatureVector,
    ) -> str:
        you = user.full_name or "You"
        they = candidate.full_name or "they"
        user_need = _first(user.items(Category.NEEDS))
        user_strength = _first(user.items(Category.STRENGTHS))
        their_need = _first(candidate.items(Category.NEEDS))
        their_strength = _first(candidate.items(Category.STRENGTHS))

        if reason == MatchReason.COMPLEMENTARY_NEEDS:
            text = (
                f"{you} need help with {user_need or 'your goals'}, and {they} excel at "
                f"{their_strength or 'providing support'}. This creates a natural synergy for collaboration."
            )
        elif reason == MatchReason.COMPLEMENTARY_STRENGTHS:
            text = (
                f"{you} bring strength in {user_strength or 'your experience'}, which is exactly what "
                f"{they} are looking for with {their_need or 'their goals'}."
            )
        elif reason == MatchReason.SHARED_GOALS:
            goal = _first_shared(user.items(Category.GOALS), candidate.items(Category.GOALS))
            text = (
                f"{you} and {they} share the goal of {goal or 'making meaningful connections'}. "
                f"Working together could accelerate progress for both of you."
            )
        elif reason == MatchReason.ALIGNED_VALUES:
            value = _first_shared(user.items(Category.VALUES), candidate.items(Category.VALUES))
            text = (
                f"{you} and {they} share similar values around "
                f"{value or _first(user.items(Category.VALUES)) or 'collaboration'}, creating a strong "
                f"foundation for a meaningful professional relationship."
            )
        else:
            text = (
                f"{you} and {they} have complementary profiles that suggest potential for "
                f"valuable collaboration."
            )

        factors = []
        if features.location_bonus > 0 and candidate.location:
            factors.append(f"You are both based in {candidate.location}.")
        if features.role_compatibility >= 1.0 and {(user.role or "").lower(), (candidate.role or "").lower()} == {"giver", "seeker"}:
            factors.append("One of you is looking to give support and the other to receive it.")
        if features.need_strength_reciprocity > 0 and features.strength_need_reciprocity > 0:
            factors.append("Each of you can help with something the other needs.")

        return " ".join([text] + factors)

    def confidence(self, features: FeatureVector) -> float:
        return min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, features.base_similarity))

    def explain(
        self,
        user: UserProfile,
        candidate: UserProfile,
        reason: MatchReason,
        features: FeatureVector,
    ) -> MatchExplanation:
        return MatchExplanation(
            evidence=self.build_evidence(user, candidate),
            narrative=self.narrative(user, candidate, reason, features),
            confidence_score=self.confidence(features),
        )
