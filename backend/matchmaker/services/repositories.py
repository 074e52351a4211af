"""
Repositories - Profile and Match Persistence

The pipeline only talks to these protocols, so the same orchestration runs
against SQLAlchemy (production) or plain dictionaries (tests, dry runs).

Match Invariants:
    - At most one active (pending/accepted) match per unordered pair.
      create_if_absent() checks before inserting and the partial unique index
      on pair_key rejects a concurrent duplicate; either way the caller gets
      None instead of an exception.
    - Only pending matches change status by user action, and only a
      participant may change them.
    - Each participant holds one feedback slot per match; resubmitting
      replaces it. Feedback is accepted in any status.
    - Active matches past expires_at become expired via expire_stale().

All timestamps are naive UTC.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Set

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchmaker.errors import invalid_input
from matchmaker.models import Match, Profile, make_pair_key
from matchmaker.schemas.match import (
    ACTIVE_STATUSES,
    MatchCreate,
    MatchFeedback,
    MatchResponse,
    MatchStatus,
)
from matchmaker.schemas.profile import UserProfile

logger = logging.getLogger(__name__)

ACTIVE_VALUES = [status.value for status in ACTIVE_STATUSES]
USER_SETTABLE = (MatchStatus.ACCEPTED, MatchStatus.DECLINED)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def check_participant(match: MatchResponse, user_id: str) -> None:
    if user_id not in (match.user_a_id, match.user_b_id):
        raise invalid_input(
            f"User {user_id} is not a participant in match {match.id}",
            "You can only respond to your own matches.",
            match_id=match.id,
        )


def feedback_slot(match: MatchResponse, user_id: str) -> str:
    """Column holding user_id's feedback on match."""
    check_participant(match, user_id)
    return "feedback_a" if user_id == match.user_a_id else "feedback_b"


def check_transition(match: MatchResponse, user_id: str, status: MatchStatus) -> None:
    """Raise a validation error unless user_id may move match to status."""
    check_participant(match, user_id)
    if status not in USER_SETTABLE:
        raise invalid_input(
            f"Status {status.value} cannot be set by a participant",
            "Matches can only be accepted or declined.",
            match_id=match.id,
        )
    if match.status != MatchStatus.PENDING:
        raise invalid_input(
            f"Match {match.id} is {match.status.value}, not pending",
            "This match can no longer be changed.",
            match_id=match.id,
        )


class ProfileRepository(Protocol):
    async def get(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        ...

    async def list_active_onboarded_ids(self) -> List[str]:
        ...


class MatchRepository(Protocol):
    async def create_if_absent(self, data: MatchCreate) -> Optional[MatchResponse]:
        ...

    async def get(self, match_id: str) -> Optional[MatchResponse]:
        ...

    async def list_for_user(self, user_id: str, status: Optional[MatchStatus] = None) -> List[MatchResponse]:
        ...

    async def active_partner_ids(self, user_id: str) -> Set[str]:
        ...

    async def has_active_match(self, user_a_id: str, user_b_id: str) -> bool:
        ...

    async def count_created_since(self, user_id: str, since: datetime) -> int:
        ...

    async def count_created_since_many(self, user_ids: Iterable[str], since: datetime) -> Dict[str, int]:
        ...

    async def count_between(self, user_a_id: str, user_b_id: str) -> int:
        ...

    async def count_between_many(self, user_id: str, other_ids: Iterable[str]) -> Dict[str, int]:
        ...

    async def update_status(self, match_id: str, user_id: str, status: MatchStatus) -> MatchResponse:
        ...

    async def submit_feedback(self, match_id: str, user_id: str, feedback: MatchFeedback) -> MatchResponse:
        ...

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        ...


# ==================== SQLAlchemy ====================


class SqlProfileRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, user_id: str) -> Optional[UserProfile]:
        async with self.session_factory() as db:
            result = await db.execute(select(Profile).where(Profile.id == user_id))
            profile = result.scalar_one_or_none()
            return UserProfile.model_validate(profile) if profile else None

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        async with self.session_factory() as db:
            result = await db.execute(select(Profile).where(Profile.id.in_(ids)))
            return {p.id: UserProfile.model_validate(p) for p in result.scalars().all()}

    async def list_active_onboarded_ids(self) -> List[str]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Profile.id)
                .where(Profile.is_active.is_(True), Profile.onboarding_completed.is_(True))
                .order_by(Profile.id)
            )
            return [row[0] for row in result.fetchall()]


class SqlMatchRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def create_if_absent(self, data: MatchCreate) -> Optional[MatchResponse]:
        pair_key = make_pair_key(data.user_a_id, data.user_b_id)

        async with self.session_factory() as db:
            existing = await db.execute(
                select(Match.id)
                .where(Match.pair_key == pair_key, Match.status.in_(ACTIVE_VALUES))
                .limit(1)
            )
            if existing.scalar_one_or_none() is not None:
                return None

            now = self.clock()
            match = Match(
                id=str(uuid.uuid4()),
                user_a_id=data.user_a_id,
                user_b_id=data.user_b_id,
                pair_key=pair_key,
                score=data.score,
                reason=data.reason.value,
                explanation=data.explanation.model_dump(),
                features=dict(data.features),
                status=MatchStatus.PENDING.value,
                allocation_week=data.allocation_week,
                expires_at=data.expires_at,
                created_at=now,
                updated_at=now,
            )
            db.add(match)
            try:
                await db.commit()
            except IntegrityError:
                # Lost a race with a concurrent insert for the same pair
                await db.rollback()
                logger.info(f"Active match already exists for pair {pair_key}")
                return None

            return MatchResponse.model_validate(match)

    async def get(self, match_id: str) -> Optional[MatchResponse]:
        async with self.session_factory() as db:
            result = await db.execute(select(Match).where(Match.id == match_id))
            match = result.scalar_one_or_none()
            return MatchResponse.model_validate(match) if match else None

    async def list_for_user(self, user_id: str, status: Optional[MatchStatus] = None) -> List[MatchResponse]:
        query = select(Match).where(or_(Match.user_a_id == user_id, Match.user_b_id == user_id))
        if status is not None:
            query = query.where(Match.status == status.value)
        query = query.order_by(Match.created_at.desc(), Match.score.desc())

        async with self.session_factory() as db:
            result = await db.execute(query)
            return [MatchResponse.model_validate(m) for m in result.scalars().all()]

    async def active_partner_ids(self, user_id: str) -> Set[str]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Match.user_a_id, Match.user_b_id).where(
                    or_(Match.user_a_id == user_id, Match.user_b_id == user_id),
                    Match.status.in_(ACTIVE_VALUES),
                )
            )
            return {b if a == user_id else a for a, b in result.fetchall()}

    async def has_active_match(self, user_a_id: str, user_b_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(Match.id)).where(
                    Match.pair_key == make_pair_key(user_a_id, user_b_id),
                    Match.status.in_(ACTIVE_VALUES),
                )
            )
            return (result.scalar() or 0) > 0

    async def count_created_since(self, user_id: str, since: datetime) -> int:
        counts = await self.count_created_since_many([user_id], since)
        return counts[user_id]

    async def count_created_since_many(self, user_ids: Iterable[str], since: datetime) -> Dict[str, int]:
        ids = list(set(user_ids))
        counts = {user_id: 0 for user_id in ids}
        if not ids:
            return counts

        async with self.session_factory() as db:
            result = await db.execute(
                select(Match.user_a_id, Match.user_b_id).where(
                    or_(Match.user_a_id.in_(ids), Match.user_b_id.in_(ids)),
                    Match.created_at >= since,
                )
            )
            for a, b in result.fetchall():
                for participant in {a, b}:
                    if participant in counts:
                        counts[participant] += 1
        return counts

    async def count_between(self, user_a_id: str, user_b_id: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(Match.id)).where(
                    Match.pair_key == make_pair_key(user_a_id, user_b_id)
                )
            )
            return result.scalar() or 0

    async def count_between_many(self, user_id: str, other_ids: Iterable[str]) -> Dict[str, int]:
        others = list(set(other_ids))
        counts = {other: 0 for other in others}
        if not others:
            return counts

        keys = {make_pair_key(user_id, other): other for other in others}
        async with self.session_factory() as db:
            result = await db.execute(
                select(Match.pair_key, func.count(Match.id))
                .where(Match.pair_key.in_(list(keys)))
                .group_by(Match.pair_key)
            )
            for pair_key, count in result.fetchall():
                counts[keys[pair_key]] = count
        return counts

    async def update_status(self, match_id: str, user_id: str, status: MatchStatus) -> MatchResponse:
        async with self.session_factory() as db:
            result = await db.execute(select(Match).where(Match.id == match_id))
            match = result.scalar_one_or_none()
            if not match:
                raise invalid_input(f"Match {match_id} not found", "Match not found.", match_id=match_id)

            check_transition(MatchResponse.model_validate(match), user_id, status)

            match.status = status.value
            match.updated_at = self.clock()
            await db.commit()
            return MatchResponse.model_validate(match)

    async def submit_feedback(self, match_id: str, user_id: str, feedback: MatchFeedback) -> MatchResponse:
        async with self.session_factory() as db:
            result = await db.execute(select(Match).where(Match.id == match_id))
            match = result.scalar_one_or_none()
            if not match:
                raise invalid_input(f"Match {match_id} not found", "Match not found.", match_id=match_id)

            slot = feedback_slot(MatchResponse.model_validate(match), user_id)

            setattr(match, slot, feedback.model_dump())
            match.updated_at = self.clock()
            await db.commit()
            logger.info(f"Feedback on match {match_id} from {user_id} (helpful={feedback.helpful})")
            return MatchResponse.model_validate(match)

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        async with self.session_factory() as db:
            result = await db.execute(
                update(Match)
                .where(Match.status.in_(ACTIVE_VALUES), Match.expires_at <= now)
                .values(status=MatchStatus.EXPIRED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            expired = result.rowcount or 0

        if expired:
            logger.info(f"Expired {expired} stale matches")
        return expired


# ==================== In-memory ====================


class InMemoryProfileRepository:
    def __init__(self, profiles: Iterable[UserProfile] = ()):
        self._profiles: Dict[str, UserProfile] = {}
        for profile in profiles:
            self.add(profile)

    def add(self, profile: UserProfile) -> None:
        self._profiles[profile.id] = profile

    async def get(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(user_id)

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        return {uid: self._profiles[uid] for uid in set(user_ids) if uid in self._profiles}

    async def list_active_onboarded_ids(self) -> List[str]:
        return sorted(
            p.id for p in self._profiles.values() if p.is_active and p.onboarding_completed
        )


class InMemoryMatchRepository:
    """Dictionary-backed match store; check-and-insert never yields, so it is race free."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self._matches: Dict[str, MatchResponse] = {}

    def all(self) -> List[MatchResponse]:
        return list(self._matches.values())

    def _involving(self, user_id: str) -> List[MatchResponse]:
        return [m for m in self._matches.values() if user_id in (m.user_a_id, m.user_b_id)]

    async def create_if_absent(self, data: MatchCreate) -> Optional[MatchResponse]:
        if await self.has_active_match(data.user_a_id, data.user_b_id):
            return None

        match = MatchResponse(
            id=str(uuid.uuid4()),
            user_a_id=data.user_a_id,
            user_b_id=data.user_b_id,
            score=data.score,
            reason=data.reason,
            explanation=data.explanation,
            features=dict(data.features),
            status=MatchStatus.PENDING,
            allocation_week=data.allocation_week,
            expires_at=data.expires_at,
            created_at=self.clock(),
        )
        self._matches[match.id] = match
        return match

    async def get(self, match_id: str) -> Optional[MatchResponse]:
        return self._matches.get(match_id)

    async def list_for_user(self, user_id: str, status: Optional[MatchStatus] = None) -> List[MatchResponse]:
        matches = [m for m in self._involving(user_id) if status is None or m.status == status]
        return sorted(matches, key=lambda m: (m.created_at, m.score), reverse=True)

    async def active_partner_ids(self, user_id: str) -> Set[str]:
        return {m.partner_of(user_id) for m in self._involving(user_id) if m.is_active}

    async def has_active_match(self, user_a_id: str, user_b_id: str) -> bool:
        pair_key = make_pair_key(user_a_id, user_b_id)
        return any(
            m.is_active and make_pair_key(m.user_a_id, m.user_b_id) == pair_key
            for m in self._matches.values()
        )

    async def count_created_since(self, user_id: str, since: datetime) -> int:
        return sum(1 for m in self._involving(user_id) if m.created_at >= since)

    async def count_created_since_many(self, user_ids: Iterable[str], since: datetime) -> Dict[str, int]:
        return {uid: await self.count_created_since(uid, since) for uid in set(user_ids)}

    async def count_between(self, user_a_id: str, user_b_id: str) -> int:
        pair_key = make_pair_key(user_a_id, user_b_id)
        return sum(1 for m in self._matches.values() if make_pair_key(m.user_a_id, m.user_b_id) == pair_key)

    async def count_between_many(self, user_id: str, other_ids: Iterable[str]) -> Dict[str, int]:
        return {other: await self.count_between(user_id, other) for other in set(other_ids)}

    async def update_status(self, match_id: str, user_id: str, status: MatchStatus) -> MatchResponse:
        match = self._matches.get(match_id)
        if match is None:
            raise invalid_input(f"Match {match_id} not found", "Match not found.", match_id=match_id)

        check_transition(match, user_id, status)
        updated = match.model_copy(update={"status": status})
        self._matches[match_id] = updated
        return updated

    async def submit_feedback(self, match_id: str, user_id: str, feedback: MatchFeedback) -> MatchResponse:
        match = self._matches.get(match_id)
        if match is None:
            raise invalid_input(f"Match {match_id} not found", "Match not found.", match_id=match_id)

        slot = feedback_slot(match, user_id)
        updated = match.model_copy(update={slot: feedback})
        self._matches[match_id] = updated
        return updated

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        expired = 0
        for match_id, match in list(self._matches.items()):
            if match.is_active and match.expires_at <= now:
                self._matches[match_id] = match.model_copy(update={"status": MatchStatus.EXPIRED})
                expired += 1
        return expired
