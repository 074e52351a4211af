"""
Shared fixtures: profile factory, a fully in-memory pipeline and SQLite
session factories for the SQL repositories.

Run with: pytest (from the repository root)
"""
import random
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from matchmaker.database import Base
from matchmaker.errors import ErrorClassifier, InMemoryErrorSink
from matchmaker.models import Match, Profile  # noqa: F401
from matchmaker.schemas import Evidence, MatchCreate, MatchExplanation, MatchReason, UserProfile
from matchmaker.services.allocator import CapacityAllocator
from matchmaker.services.candidates import CandidateGenerator
from matchmaker.services.diversity import SerendipitySelector
from matchmaker.services.embedding_providers import HashingEmbeddingProvider
from matchmaker.services.embeddings import EmbeddingClient
from matchmaker.services.pipeline import MatchingPipeline
from matchmaker.services.profile_embeddings import ProfileEmbeddingService
from matchmaker.services.repositories import (
    InMemoryMatchRepository,
    InMemoryProfileRepository,
    utcnow,
)
from matchmaker.services.retry import RetryPolicy
from matchmaker.services.scoring import FeatureScorer
from matchmaker.services.vector_db import InMemoryVectorStore

TEST_DIMENSIONS = 256


async def no_sleep(delay: float) -> None:
    return None


def make_profile(user_id: str, **fields) -> UserProfile:
    return UserProfile(id=user_id, **fields)


def make_match(user_a_id: str, user_b_id: str, week=date(2026, 3, 2), expires_at=None, **fields) -> MatchCreate:
    explanation = MatchExplanation(
        evidence=Evidence(
            your_need="funding", their_strength="fundraising", shared_goal="launch", shared_value="honesty"
        ),
        narrative="You need help with funding.",
        confidence_score=0.5,
    )
    values = dict(
        user_a_id=user_a_id,
        user_b_id=user_b_id,
        score=0.5,
        reason=MatchReason.COMPLEMENTARY_NEEDS,
        explanation=explanation,
        allocation_week=week,
        expires_at=expires_at or datetime.combine(week, time.min) + timedelta(days=7),
    )
    values.update(fields)
    return MatchCreate(**values)


class FixedClock:
    """Settable clock for repositories and pipelines."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def profile_factory():
    """Build a UserProfile with only the fields a test cares about."""
    return make_profile


@pytest.fixture
def error_sink():
    return InMemoryErrorSink()


@pytest.fixture
def classifier(error_sink):
    return ErrorClassifier(sink=error_sink)


@pytest.fixture
def embedding_client(classifier):
    """EmbeddingClient over the offline hashing provider; never sleeps."""
    return EmbeddingClient(
        HashingEmbeddingProvider(TEST_DIMENSIONS),
        dimensions=TEST_DIMENSIONS,
        retry_policy=RetryPolicy(jitter=0, sleep=no_sleep),
        classifier=classifier,
        batch_delay=0,
    )


@pytest.fixture
def pipeline_factory(embedding_client, classifier):
    """
    Build an in-memory MatchingPipeline.

    Returns (pipeline, profiles_repo, matches_repo, store); pass matches/store
    to share state between pipelines.
    """
    def build(profiles, weekly_cap=3, exploration_fraction=0.15, matches=None, store=None,
              profile_repo=None, batch_size=10, clock=None):
        clock = clock or utcnow
        if profile_repo is None:
            profile_repo = InMemoryProfileRepository(profiles)
        if matches is None:
            matches = InMemoryMatchRepository(clock)
        if store is None:
            store = InMemoryVectorStore()

        pipeline = MatchingPipeline(
            profiles=profile_repo,
            matches=matches,
            embeddings=ProfileEmbeddingService(embedding_client, store, classifier),
            candidates=CandidateGenerator(store, classifier),
            scorer=FeatureScorer(profile_repo, matches),
            selector=SerendipitySelector(exploration_fraction, rng=random.Random(7)),
            allocator=CapacityAllocator(matches, weekly_cap=weekly_cap),
            classifier=classifier,
            batch_size=batch_size,
            clock=clock,
        )
        return pipeline, profile_repo, matches, store

    return build


@pytest.fixture
def match_factory():
    """Build a MatchCreate between two users."""
    return make_match


@pytest.fixture
def clock():
    """Clock fixed at Wednesday 2026-03-04 12:00 (week of Monday 2026-03-02)."""
    return FixedClock(datetime(2026, 3, 4, 12, 0))


async def make_session_factory(url: str = "sqlite+aiosqlite://"):
    """Fresh database with all tables; in-memory unless a file URL is given."""
    if url == "sqlite+aiosqlite://":
        engine = create_async_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def session_factory_builder():
    """Async builder for SQL repository session factories."""
    return make_session_factory


@pytest.fixture
def sqlite_file_url(tmp_path):
    """File-backed database, so concurrent sessions really interleave."""
    return f"sqlite+aiosqlite:///{tmp_path / 'matchmaker.db'}"
