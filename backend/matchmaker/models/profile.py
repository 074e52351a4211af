"""
Profile Model - Finalized onboarding profile used for matching

Category lists are stored as JSON arrays of free-text entries. Embeddings are
not stored here; they live in the vector store keyed by (user_id, category).
"""

from sqlalchemy import Boolean, Column, DateTime, Float, JSON, String
from sqlalchemy.sql import func
from matchmaker.database import Base


class Profile(Base):
    """
    Attributes:
        strengths/needs/goals/values: Free-text category lists
        role: "giver", "seeker" or "both"
        weekly_availability: Hours per week available for introductions
        readiness_level: Self-reported readiness (0-10)
        is_active/onboarding_completed: Eligibility for allocation runs
    """

    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    full_name = Column(String(200), nullable=True)
    strengths = Column(JSON, nullable=False, default=list)
    needs = Column(JSON, nullable=False, default=list)
    goals = Column(JSON, nullable=False, default=list)
    values = Column(JSON, nullable=False, default=list)
    role = Column(String(20), nullable=True)
    location = Column(String(200), nullable=True)
    weekly_availability = Column(Float, nullable=True)
    readiness_level = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    onboarding_completed = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
