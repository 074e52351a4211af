from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class MatchReason(str, Enum):
    COMPLEMENTARY_STRENGTHS = "complementary_strengths"
    COMPLEMENTARY_NEEDS = "complementary_needs"
    SHARED_GOALS = "shared_goals"
    ALIGNED_VALUES = "aligned_values"


class MatchStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


ACTIVE_STATUSES = (MatchStatus.PENDING, MatchStatus.ACCEPTED)


class Evidence(BaseModel):
    class Config:
        frozen = True

    your_need: str
    their_strength: str
    shared_goal: str
    shared_value: str


class MatchExplanation(BaseModel):
    class Config:
        frozen = True

    evidence: Evidence
    narrative: str
    confidence_score: float = Field(ge=0.1, le=0.95)


class MatchCreate(BaseModel):
    user_a_id: str
    user_b_id: str
    score: float = Field(ge=0.0, le=1.0)
    reason: MatchReason
    explanation: MatchExplanation
    features: Dict[str, float] = Field(default_factory=dict)
    allocation_week: date
    expires_at: datetime


class MatchFeedback(BaseModel):
    """One participant's verdict on an introduction."""

    helpful: bool
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    text: Optional[str] = Field(default=None, max_length=2000)


class MatchFeedbackSubmit(BaseModel):
    user_id: str = Field(min_length=1)
    feedback: MatchFeedback


class MatchResponse(BaseModel):
    class Config:
        from_attributes = True

    id: str
    user_a_id: str
    user_b_id: str
    score: float
    reason: MatchReason
    explanation: MatchExplanation
    features: Dict[str, float] = Field(default_factory=dict)
    status: MatchStatus
    allocation_week: date
    expires_at: datetime
    created_at: Optional[datetime] = None
    feedback_a: Optional[MatchFeedback] = None
    feedback_b: Optional[MatchFeedback] = None

    def partner_of(self, user_id: str) -> str:
        return self.user_b_id if self.user_a_id == user_id else self.user_a_id

    def feedback_from(self, user_id: str) -> Optional[MatchFeedback]:
        if user_id == self.user_a_id:
            return self.feedback_a
        if user_id == self.user_b_id:
            return self.feedback_b
        return None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class MatchStatusUpdate(BaseModel):
    user_id: str
    status: MatchStatus


class MatchListResponse(BaseModel):
    matches: List[MatchResponse]
    total: int


class UserRunResult(BaseModel):
    user_id: str
    matches_created: int = 0
    success: bool = True
    error_kind: Optional[str] = None
    error: Optional[str] = None


class RunSummary(BaseModel):
    total_users: int
    successful_users: int
    failed_users: int
    total_matches_created: int
    expired_matches: int = 0
    results: List[UserRunResult]

    @classmethod
    def from_results(cls, results: List[UserRunResult], expired_matches: int = 0) -> "RunSummary":
        return cls(
            total_users=len(results),
            successful_users=sum(1 for r in results if r.success),
            failed_users=sum(1 for r in results if not r.success),
            total_matches_created=sum(r.matches_created for r in results),
            expired_matches=expired_matches,
            results=results,
        )
