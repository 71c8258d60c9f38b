"""Pydantic schemas for the Web API.

Request bodies and typed responses. Endpoints that return nested catalog
data (courses, dashboards, balances) pass plain dicts through.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


# =============================================================================
# AUTH SCHEMAS
# =============================================================================


class RegisterRequest(BaseModel):
    """Request body for registering a user."""

    email: str = Field(..., min_length=3, max_length=200, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=200)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    """Request body for logging in."""

    email: str
    password: str


class UserResponse(BaseModel):
    """Public view of a user."""

    user_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    role: str
    subscription_tier: str
    token_balance: int

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    """Issued access token."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# =============================================================================
# ACADEMY SCHEMAS
# =============================================================================


class EnrollRequest(BaseModel):
    """Request to enroll in a course."""

    course_slug: str = Field(..., alias="courseSlug")
    enrollment_type: str = Field(default="free", alias="enrollmentType")
    payment_id: str | None = Field(default=None, alias="paymentId")

    model_config = {"populate_by_name": True}


class ProgressRequest(BaseModel):
    """Lesson progress update."""

    completed: bool = False
    time_spent: int = Field(default=0, ge=0, alias="timeSpent")
    quiz_score: float | None = Field(default=None, alias="quizScore")

    model_config = {"populate_by_name": True}


class RatingRequest(BaseModel):
    """Lesson rating."""

    rating: int
    feedback: str | None = Field(default=None, max_length=2000)


class QuizSubmission(BaseModel):
    """Answers in question order."""

    answers: list[Any] = Field(default_factory=list)


class SeedRequest(BaseModel):
    """Secret-guarded seed request."""

    secret: str


# =============================================================================
# BILLING SCHEMAS
# =============================================================================


class TokenCheckoutRequest(BaseModel):
    """Request to buy a token package."""

    package_key: str = Field(..., alias="packageKey")

    model_config = {"populate_by_name": True}


class CheckoutResponse(BaseModel):
    """A checkout session."""

    session_id: str
    url: str
    status: str
    package_key: str
    tokens: int
    price_in_cents: int
    tokens_credited: int = 0
    new_balance: int | None = None


# =============================================================================
# GENERATION SCHEMAS
# =============================================================================


class Customization(BaseModel):
    """Optional tone, detail level and output format."""

    tone: str | None = None
    detail_level: str | None = Field(default=None, alias="detailLevel")
    format: str | None = None

    model_config = {"populate_by_name": True}

    def to_options(self) -> dict[str, str]:
        return {
            key: value
            for key, value in (
                ("tone", self.tone),
                ("detail_level", self.detail_level),
                ("format", self.format),
            )
            if value
        }


# Keys of TOKEN_CONSUMPTION
Complexity = Literal["simple", "standard", "complex", "custom"]


class GenerateRequest(BaseModel):
    """Request to generate a category prompt."""

    category: str
    answers: dict[str, Any] = Field(default_factory=dict)
    customization: Customization = Field(default_factory=Customization)
    complexity: Complexity = "standard"


class RefinementStep(BaseModel):
    """One earlier refinement."""

    question: str


class RefineRequest(BaseModel):
    """Request to refine an existing prompt."""

    current_prompt: str = Field(..., alias="currentPrompt", min_length=1)
    refinement_query: str = Field(..., alias="refinementQuery", min_length=1, max_length=2000)
    category: str
    original_answers: dict[str, Any] = Field(default_factory=dict, alias="originalAnswers")
    history: list[RefinementStep] = Field(default_factory=list)
    complexity: Complexity = "simple"

    model_config = {"populate_by_name": True}


class GenerationResponse(BaseModel):
    """Generated prompt and what it cost."""

    content: str
    category: str
    model: str | None = None
    cached: bool = False
    sections: list[str] = Field(default_factory=list)
    tokens_consumed: int = 0
    token_balance: int | None = None
    low_balance: bool = False


# =============================================================================
# EXPERIMENT SCHEMAS
# =============================================================================


class TrackEventRequest(BaseModel):
    """A/B test event."""

    event_type: str = Field(..., alias="eventType", min_length=1)
    value: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class AssignmentResponse(BaseModel):
    """Assigned variant for a user, if any."""

    test_id: str
    user_id: str
    variant: dict[str, Any] | None = None


# =============================================================================
# SYSTEM SCHEMAS
# =============================================================================


class MaxConcurrentRequest(BaseModel):
    """New queue concurrency cap."""

    max_concurrent: int = Field(..., ge=1, alias="maxConcurrent")

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    queue: str = "healthy"
