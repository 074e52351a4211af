from matchmaker.schemas.profile import Category, UserProfile, EmbeddingRefreshResponse
from matchmaker.schemas.match import (
    ACTIVE_STATUSES,
    Evidence,
    MatchCreate,
    MatchExplanation,
    MatchFeedback,
    MatchFeedbackSubmit,
    MatchListResponse,
    MatchReason,
    MatchResponse,
    MatchStatus,
    MatchStatusUpdate,
    RunSummary,
    UserRunResult,
)

__all__ = [
    "ACTIVE_STATUSES",
    "Category",
    "UserProfile",
    "EmbeddingRefreshResponse",
    "Evidence",
    "MatchCreate",
    "MatchExplanation",
    "MatchFeedback",
    "MatchFeedbackSubmit",
    "MatchListResponse",
    "MatchReason",
    "MatchResponse",
    "MatchStatus",
    "MatchStatusUpdate",
    "RunSummary",
    "UserRunResult",
]
