from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Category(str, Enum):
    STRENGTHS = "strengths"
    NEEDS = "needs"
    GOALS = "goals"
    VALUES = "values"


class UserProfile(BaseModel):
    """Finalized profile supplied by the profile store."""

    id: str
    full_name: Optional[str] = None
    strengths: List[str] = Field(default_factory=list)
    needs: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    values: List[str] = Field(default_factory=list)
    role: Optional[str] = None
    location: Optional[str] = None
    weekly_availability: Optional[float] = Field(default=None, ge=0)
    readiness_level: Optional[float] = Field(default=None, ge=0, le=10)
    is_active: bool = True
    onboarding_completed: bool = True

    class Config:
        from_attributes = True

    def items(self, category: Category) -> List[str]:
        """Trimmed, non-empty entries for a category."""
        return [item.strip() for item in getattr(self, category.value) or [] if item and item.strip()]

    def category_text(self, category: Category) -> str:
        """Text submitted for embedding; empty when the category has no data."""
        return "; ".join(self.items(category))

    def has_category_data(self) -> bool:
        return any(self.items(category) for category in Category)


class EmbeddingRefreshResponse(BaseModel):
    user_id: str
    refreshed: List[Category]
    unchanged: List[Category]
    removed: List[Category]
    failed: List[Category]
