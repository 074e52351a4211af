"""
Matching Pipeline - Weekly Allocation Orchestrator

Per-User Flow:
    1. Load the profile (unknown user → validation error)
    2. Users with no category data finish with zero matches
    3. Lazily refresh stale embeddings
    4. Generate candidates, excluding active partners
    5. Score → diversify (slate = weekly cap)
    6. Under the allocation lock: allocate, then explain and persist each
       allocation (create_if_absent)

Population Flow:
    1. Expire stale matches
    2. Refresh embeddings for every eligible user, batch by batch
    3. Run the per-user flow batch by batch; users within a batch run
       concurrently, batches run one after another
    4. Summarize per-user outcomes

Steps 1-5 run concurrently. Step 6 holds a pipeline-wide lock, so weekly
counts read by one user's allocation already include every match persisted
by the users allocated before it.

A failing user is classified, recorded and reported in the summary; the
rest of the batch continues.

Usage:
    pipeline = create_pipeline()
    summary = await pipeline.run_population()
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchmaker.config import Settings, get_settings
from matchmaker.errors import ErrorClassifier, invalid_input, validate_user_id
from matchmaker.middleware.metrics import (
    record_match_created,
    record_pipeline_run,
    record_user_processed,
)
from matchmaker.schemas.match import MatchCreate, RunSummary, UserRunResult
from matchmaker.schemas.profile import EmbeddingRefreshResponse, UserProfile
from matchmaker.services.allocator import CapacityAllocator, week_start
from matchmaker.services.cache import EmbeddingCache
from matchmaker.services.candidates import CandidateGenerator
from matchmaker.services.diversity import SerendipitySelector
from matchmaker.services.embedding_providers import EmbeddingProvider, get_embedding_provider
from matchmaker.services.embeddings import EmbeddingClient
from matchmaker.services.explanations import ExplanationGenerator
from matchmaker.services.profile_embeddings import ProfileEmbeddingService
from matchmaker.services.repositories import (
    MatchRepository,
    ProfileRepository,
    SqlMatchRepository,
    SqlProfileRepository,
    utcnow,
)
from matchmaker.services.retry import RetryPolicy
from matchmaker.services.scoring import FeatureScorer, ScoredCandidate
from matchmaker.services.vector_db import VectorStore, get_vector_store

logger = logging.getLogger(__name__)


def _chunks(items: List[str], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class MatchingPipeline:
    """
    Attributes:
        profiles/matches: Repositories
        embeddings: Lazy per-category embedding sync
        candidates/scorer/selector/allocator/explainer: Pipeline stages
        batch_size: Users processed concurrently per batch
        match_expiry_days: Lifetime of a new match
        clock: Naive-UTC time source
    """

    def __init__(
        self,
        profiles: ProfileRepository,
        matches: MatchRepository,
        embeddings: ProfileEmbeddingService,
        candidates: CandidateGenerator,
        scorer: FeatureScorer,
        selector: SerendipitySelector,
        allocator: CapacityAllocator,
        explainer: Optional[ExplanationGenerator] = None,
        classifier: Optional[ErrorClassifier] = None,
        batch_size: int = 10,
        match_expiry_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.profiles = profiles
        self.matches = matches
        self.embeddings = embeddings
        self.candidates = candidates
        self.scorer = scorer
        self.selector = selector
        self.allocator = allocator
        self.explainer = explainer or ExplanationGenerator()
        self.classifier = classifier or ErrorClassifier()
        self.batch_size = batch_size
        self.match_expiry_days = match_expiry_days
        self.clock = clock
        self._allocation_lock = asyncio.Lock()

    async def refresh_embeddings(self, user_id: str, force: bool = False) -> EmbeddingRefreshResponse:
        user_id = validate_user_id(user_id)
        profile = await self.profiles.get(user_id)
        if profile is None:
            raise invalid_input(f"Profile {user_id} not found", "Profile not found.", user_id=user_id)
        return await self.embeddings.sync_profile(profile, force=force)

    async def run_for_user(self, user_id: str, per_run_cap: Optional[int] = None) -> UserRunResult:
        """
        Allocate this week's matches for one user.

        Raises:
            MatchingError: validation kind for an unknown user; any stage
                failure propagates to the caller
        """
        user_id = validate_user_id(user_id)
        profile = await self.profiles.get(user_id)
        if profile is None:
            raise invalid_input(f"Profile {user_id} not found", "Profile not found.", user_id=user_id)

        if not profile.has_category_data():
            logger.info(f"User {user_id} has no profile data to match on")
            return UserRunResult(user_id=user_id, matches_created=0)

        await self.embeddings.sync_profile(profile)

        partners = await self.matches.active_partner_ids(user_id)
        candidates = await self.candidates.generate(profile, exclude=partners)
        scored = await self.scorer.score(profile, candidates)
        ordered = self.selector.select(scored, slots=self.allocator.weekly_cap)

        async with self._allocation_lock:
            created = await self._allocate_and_persist(profile, ordered, per_run_cap)

        logger.info(
            f"User {user_id}: {len(candidates)} candidates, {len(scored)} scored, {created} matches created"
        )
        return UserRunResult(user_id=user_id, matches_created=created)

    async def _allocate_and_persist(
        self,
        profile: UserProfile,
        ordered: List[ScoredCandidate],
        per_run_cap: Optional[int],
    ) -> int:
        """Caller must hold the allocation lock."""
        user_id = profile.id
        now = self.clock()
        week = week_start(now.date())
        allocated = await self.allocator.allocate(user_id, ordered, week, per_run_cap=per_run_cap)

        created = 0
        for choice in allocated:
            explanation = self.explainer.explain(profile, choice.profile, choice.reason, choice.features)
            match = await self.matches.create_if_absent(MatchCreate(
                user_a_id=user_id,
                user_b_id=choice.candidate_id,
                score=choice.score,
                reason=choice.reason,
                explanation=explanation,
                features=choice.features.as_dict(),
                allocation_week=week,
                expires_at=now + timedelta(days=self.match_expiry_days),
            ))
            if match is None:
                logger.info(f"Skipped {user_id} ↔ {choice.candidate_id}: active match already exists")
                continue

            created += 1
            record_match_created(choice.reason.value)

        return created

    async def _run_user_safely(self, user_id: str) -> UserRunResult:
        try:
            result = await self.run_for_user(user_id)
        except Exception as e:
            error = self.classifier.handle(e, operation="run_for_user", user_id=user_id)
            logger.error(f"Matching failed for {user_id} ({error.kind.value}): {error.message}")
            record_user_processed(False)
            return UserRunResult(
                user_id=user_id,
                success=False,
                error_kind=error.kind.value,
                error=error.message,
            )

        record_user_processed(True)
        return result

    async def _refresh_all(self, user_ids: List[str]) -> None:
        for batch in _chunks(user_ids, self.batch_size):
            profiles = await self.profiles.get_many(batch)
            await asyncio.gather(*(
                self.embeddings.sync_profile(profiles[uid]) for uid in batch if uid in profiles
            ))

    async def run_population(self, user_ids: Optional[List[str]] = None) -> RunSummary:
        """
        Run allocation for every active, onboarded user (or the given ids).

        Returns:
            RunSummary with one UserRunResult per user
        """
        start = time.perf_counter()
        expired = await self.expire_stale()

        if user_ids is None:
            user_ids = await self.profiles.list_active_onboarded_ids()
        user_ids = list(dict.fromkeys(user_ids))
        logger.info(f"Starting matching run for {len(user_ids)} users")

        try:
            await self._refresh_all(user_ids)
        except Exception as e:
            # run_for_user syncs each profile again
            error = self.classifier.handle(e, operation="refresh_all")
            logger.warning(f"Embedding pre-pass failed ({error.kind.value}): {error.message}")

        results: List[UserRunResult] = []
        for batch in _chunks(user_ids, self.batch_size):
            results.extend(await asyncio.gather(*(self._run_user_safely(uid) for uid in batch)))

        summary = RunSummary.from_results(results, expired_matches=expired)
        duration = time.perf_counter() - start
        record_pipeline_run(duration)
        logger.info(
            f"Matching run complete in {duration:.1f}s: {summary.successful_users}/{summary.total_users} "
            f"users succeeded, {summary.total_matches_created} matches created, "
            f"{summary.expired_matches} expired"
        )
        return summary

    async def expire_stale(self) -> int:
        return await self.matches.expire_stale(self.clock())


def create_pipeline(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    store: Optional[VectorStore] = None,
    provider: Optional[EmbeddingProvider] = None,
) -> MatchingPipeline:
    """Wire the production pipeline from settings."""
    settings = settings or get_settings()
    if session_factory is None:
        from matchmaker.database import async_session
        session_factory = async_session

    classifier = ErrorClassifier()

    if provider is None:
        api_key = (
            settings.openai_api_key
            if settings.embedding_provider.lower() == "openai"
            else settings.huggingface_api_key
        )
        provider = get_embedding_provider(
            settings.embedding_provider,
            api_key=api_key,
            model_name=settings.embedding_model,
            api_url=settings.embedding_api_url,
            timeout=settings.embedding_timeout_seconds,
            dimensions=settings.embedding_dimensions,
        )

    cache = None
    if settings.embedding_cache_enabled:
        cache = EmbeddingCache(settings.redis_url, model=settings.embedding_model)

    client = EmbeddingClient(
        provider,
        dimensions=settings.embedding_dimensions,
        max_chars=settings.embedding_max_chars,
        retry_policy=RetryPolicy(
            max_attempts=settings.embedding_max_attempts,
            base_delay=settings.embedding_base_delay,
            max_delay=settings.embedding_max_delay,
            jitter=settings.embedding_jitter,
        ),
        cache=cache,
        classifier=classifier,
        batch_delay=settings.embedding_batch_delay,
    )

    if store is None:
        store = get_vector_store()
    profiles = SqlProfileRepository(session_factory)
    matches = SqlMatchRepository(session_factory)

    return MatchingPipeline(
        profiles=profiles,
        matches=matches,
        embeddings=ProfileEmbeddingService(client, store, classifier),
        candidates=CandidateGenerator(store, classifier, pool_limit=settings.candidate_pool_limit),
        scorer=FeatureScorer(profiles, matches),
        selector=SerendipitySelector(settings.exploration_fraction),
        allocator=CapacityAllocator(matches, weekly_cap=settings.weekly_match_cap),
        classifier=classifier,
        batch_size=settings.pipeline_batch_size,
        match_expiry_days=settings.match_expiry_days,
    )
