"""
Data models for code roast reviews.
Using Pydantic for validation and type safety.

Wire keys follow the dashboard's camelCase (bestPractices, lastUsedAt, ...);
dump with by_alias=True when answering HTTP callers.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

FeedbackKind = Literal["roast", "issue", "suggestion", "positive"]
Plan = Literal["free", "pro", "team"]
TeamRole = Literal["owner", "admin", "member"]


class FeedbackItem(BaseModel):
    """Single feedback line of a review."""

    type: FeedbackKind = Field(..., description="roast, issue, suggestion or positive")
    message: str = Field(..., description="Human-readable feedback")


class ReviewMetrics(BaseModel):
    """Per-dimension quality scores, each 0-100."""

    model_config = ConfigDict(populate_by_name=True)

    readability: int = Field(..., ge=0, le=100)
    maintainability: int = Field(..., ge=0, le=100)
    efficiency: int = Field(..., ge=0, le=100)
    best_practices: int = Field(..., ge=0, le=100, alias="bestPractices")
    security: int = Field(..., ge=0, le=100)


class ReviewResult(BaseModel):
    """Structured review, either model-generated or the fallback."""

    model_config = ConfigDict(populate_by_name=True)

    score: int = Field(..., ge=0, le=100, description="Overall quality score")
    summary: str
    feedback: List[FeedbackItem]
    metrics: ReviewMetrics


class ReviewRequest(BaseModel):
    """Code submission. Empty values are reported per field by the pipeline."""

    code: str = ""
    language: str = ""


class ApiReviewRequest(BaseModel):
    """Body of the public API endpoint."""

    code: Optional[str] = None
    language: Optional[str] = None


class StoredReview(ReviewResult):
    """A persisted review as returned to its owner."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    user_id: str = Field(..., alias="userId")
    code: str
    language: str
    created_at: datetime = Field(..., alias="createdAt")


class SubmittedReview(ReviewResult):
    """Pipeline output: the review plus the id of its stored row."""

    id: str


class Entitlement(BaseModel):
    """Caller's billing plan as last synced from the payment processor."""

    model_config = ConfigDict(populate_by_name=True)

    plan: Plan = "free"
    status: Optional[str] = None
    is_subscribed: bool = Field(False, alias="isSubscribed")
    is_canceled: bool = Field(False, alias="isCanceled")
    period_end: Optional[datetime] = Field(None, alias="periodEnd")


class MonthlyUsage(BaseModel):
    """Reviews used in the current quota window. limit is None for paid plans."""

    model_config = ConfigDict(populate_by_name=True)

    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    window_start: datetime = Field(..., alias="windowStart")


class ApiKeyInfo(BaseModel):
    """API key as listed to its owner. Never includes the secret."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    name: str
    key_prefix: str = Field(..., alias="keyPrefix")
    created_at: datetime = Field(..., alias="createdAt")
    last_used_at: Optional[datetime] = Field(None, alias="lastUsedAt")


class ApiKeyCreated(ApiKeyInfo):
    """Creation response. The only time the plaintext key is returned."""

    key: str


class TeamInfo(BaseModel):
    """A team together with the caller's role in it."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    role: TeamRole


class TeamMemberInfo(BaseModel):
    """A team membership row with public user fields."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., alias="userId")
    name: str
    email: str
    role: TeamRole
