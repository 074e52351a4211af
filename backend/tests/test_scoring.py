"""
Tests for feature computation and the linear score.

Run with: pytest backend/tests/test_scoring.py -v
"""
import math

import pytest

from matchmaker.schemas import MatchReason
from matchmaker.services.candidates import Candidate
from matchmaker.services.repositories import InMemoryMatchRepository, InMemoryProfileRepository
from matchmaker.services.scoring import (
    FEATURE_WEIGHTS,
    FeatureScorer,
    FeatureVector,
    compute_features,
    jaccard,
    linear_score,
    role_compatibility,
)


def features(**overrides):
    values = {name: 0.0 for name in FEATURE_WEIGHTS}
    values.update(overrides)
    return FeatureVector(**values)


class TestJaccard:
    def test_overlap(self):
        assert jaccard(["A", "b"], ["b", "c"]) == pytest.approx(1 / 3)

    def test_case_and_whitespace_insensitive(self):
        assert jaccard([" UX Research "], ["ux research"]) == 1.0

    def test_empty_side_is_zero(self):
        assert jaccard([], ["a"]) == 0.0
        assert jaccard(["a"], ["", "  "]) == 0.0


class TestRoleCompatibility:
    @pytest.mark.parametrize("a,b,expected", [
        ("both", "giver", 1.0),
        ("seeker", "both", 1.0),
        ("giver", "seeker", 1.0),
        ("Seeker", "giver", 1.0),
        ("giver", "giver", 0.5),
        ("mentor", "founder", 0.2),
        (None, None, 0.2),
    ])
    def test_table(self, a, b, expected):
        assert role_compatibility(a, b) == expected


class TestComputeFeatures:
    def test_all_features(self, profile_factory):
        user = profile_factory(
            "a", strengths=["design"], needs=["funding"], goals=["launch"], values=["honesty"],
            role="seeker", location="Berlin", weekly_availability=4, readiness_level=8,
        )
        candidate = profile_factory(
            "b", strengths=["funding"], needs=["design"], goals=["launch"], values=["speed"],
            role="giver", location="berlin", weekly_availability=2, readiness_level=5,
        )

        vector = compute_features(user, candidate, base_similarity=0.8, prior_match_count=3)

        assert vector.base_similarity == 0.8
        assert vector.need_strength_reciprocity == 1.0
        assert vector.strength_need_reciprocity == 1.0
        assert vector.readiness_compatibility == pytest.approx(0.3)
        assert vector.availability_overlap == pytest.approx(0.2)
        assert vector.location_bonus == 1.0
        assert vector.role_compatibility == 1.0
        # tags: {design, funding, launch, honesty} vs {funding, design, launch, speed}
        assert vector.tag_overlap == pytest.approx(3 / 5)
        assert vector.reputation_score == 1.0
        assert vector.novelty_penalty == pytest.approx(0.3)

    def test_defaults_when_scalars_missing(self, profile_factory):
        vector = compute_features(profile_factory("a"), profile_factory("b"), 0.5)

        assert vector.readiness_compatibility == 0.0
        assert vector.availability_overlap == pytest.approx(0.5)
        assert vector.location_bonus == 0.0

    def test_scalar_features_stay_in_unit_range(self, profile_factory):
        vector = compute_features(
            profile_factory("a", weekly_availability=40, readiness_level=0),
            profile_factory("b", weekly_availability=25, readiness_level=10),
            0.5,
        )

        assert vector.availability_overlap == 1.0
        assert vector.readiness_compatibility == 1.0

    def test_novelty_penalty_saturates(self, profile_factory):
        vector = compute_features(profile_factory("a"), profile_factory("b"), 0.5, prior_match_count=25)
        assert vector.novelty_penalty == 1.0

    def test_as_dict_has_every_weighted_feature(self, profile_factory):
        vector = compute_features(profile_factory("a"), profile_factory("b"), 0.5)
        assert set(vector.as_dict()) == set(FEATURE_WEIGHTS)


class TestLinearScore:
    """The score is always clamped into [0, 1]."""

    def test_weights_are_documented_constants(self):
        assert FEATURE_WEIGHTS["readiness_compatibility"] < 0
        assert FEATURE_WEIGHTS["novelty_penalty"] < 0
        assert FEATURE_WEIGHTS["base_similarity"] == 0.3

    def test_weighted_sum(self):
        score = linear_score(features(base_similarity=1.0, location_bonus=1.0))
        assert score == pytest.approx(0.4)

    def test_stronger_pair_scores_higher(self, profile_factory):
        """Similarity and reciprocity still separate pairs when availability is high."""
        user = profile_factory("a", needs=["funding"], weekly_availability=10, readiness_level=5)
        strong = profile_factory("b", strengths=["funding"], weekly_availability=10, readiness_level=5)
        weak = profile_factory("c", strengths=["knitting"], weekly_availability=10, readiness_level=5)

        strong_score = linear_score(compute_features(user, strong, base_similarity=0.95))
        weak_score = linear_score(compute_features(user, weak, base_similarity=0.05))

        assert strong_score > weak_score
        assert strong_score < 1.0

    def test_clamped_high(self):
        assert linear_score(features(availability_overlap=1000.0)) == 1.0

    def test_clamped_low(self):
        assert linear_score(features(readiness_compatibility=10.0, novelty_penalty=1.0)) == 0.0

    @pytest.mark.parametrize("value", [math.inf, -math.inf, math.nan])
    def test_non_finite_scores_zero(self, value):
        assert linear_score(features(base_similarity=value)) == 0.0

    def test_extremes_stay_in_range(self):
        for extreme in (-1e9, -1.0, 0.0, 1.0, 1e9):
            vector = features(**{name: extreme for name in FEATURE_WEIGHTS})
            assert 0.0 <= linear_score(vector) <= 1.0


class TestFeatureScorer:
    @pytest.mark.asyncio
    async def test_scores_sorted_and_missing_profiles_skipped(self, profile_factory):
        user = profile_factory("a", needs=["funding"])
        strong = profile_factory("b", strengths=["funding"])
        weak = profile_factory("c", strengths=["knitting"])
        inactive = profile_factory("d", strengths=["funding"], is_active=False)
        profiles = InMemoryProfileRepository([user, strong, weak, inactive])
        scorer = FeatureScorer(profiles, InMemoryMatchRepository())

        candidates = [
            Candidate("a", "c", MatchReason.COMPLEMENTARY_NEEDS, 0.2, 0.4),
            Candidate("a", "b", MatchReason.COMPLEMENTARY_NEEDS, 0.9, 0.4),
            Candidate("a", "d", MatchReason.COMPLEMENTARY_NEEDS, 0.9, 0.4),
            Candidate("a", "ghost", MatchReason.COMPLEMENTARY_NEEDS, 0.9, 0.4),
        ]

        scored = await scorer.score(user, candidates)

        assert [s.candidate_id for s in scored] == ["b", "c"]
        assert scored[0].score > scored[1].score
        assert scored[0].features.need_strength_reciprocity == 1.0
        assert all(0.0 <= s.score <= 1.0 for s in scored)

    @pytest.mark.asyncio
    async def test_empty_pool(self, profile_factory):
        scorer = FeatureScorer(InMemoryProfileRepository(), InMemoryMatchRepository())
        assert await scorer.score(profile_factory("a"), []) == []
