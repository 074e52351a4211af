"""
Match Model - An introduction between two users

Status Flow:
    pending → accepted | declined
    pending/accepted → expired (after expires_at)

The pair is unordered: pair_key holds both ids sorted and joined by ":".
A partial unique index keeps at most one active (pending/accepted) match
per pair.
"""

import uuid

from sqlalchemy import Column, Date, DateTime, Float, Index, JSON, String, text
from sqlalchemy.sql import func
from matchmaker.database import Base


def make_pair_key(user_a_id: str, user_b_id: str) -> str:
    return ":".join(sorted((user_a_id, user_b_id)))


_ACTIVE_CLAUSE = text("status IN ('pending', 'accepted')")


class Match(Base):
    """
    Attributes:
        score: Linear model score (0-1), fixed at creation
        reason: MatchReason value of the originating strategy
        explanation: Evidence, narrative and confidence (JSON), fixed at creation
        features: Feature vector used for the score (audit data)
        allocation_week: Monday of the allocation week
        expires_at: When a still-active match auto-expires
        feedback_a/feedback_b: Latest MatchFeedback from user_a / user_b (JSON)
    """

    __tablename__ = "matches"
    __table_args__ = (
        Index(
            "uq_matches_active_pair",
            "pair_key",
            unique=True,
            sqlite_where=_ACTIVE_CLAUSE,
            postgresql_where=_ACTIVE_CLAUSE,
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_a_id = Column(String, nullable=False, index=True)
    user_b_id = Column(String, nullable=False, index=True)
    pair_key = Column(String, nullable=False, index=True)
    score = Column(Float, nullable=False)
    reason = Column(String(40), nullable=False)
    explanation = Column(JSON, nullable=False)
    features = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="pending", index=True)
    allocation_week = Column(Date, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    feedback_a = Column(JSON, nullable=True)
    feedback_b = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
