from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Mode = Literal["standard", "casual", "academic", "creative"]
Personality = Literal["neutral", "friendly", "professional", "casual"]
LengthAdjustment = Literal["maintain", "shorter", "longer"]
SubscriptionTier = Literal["free", "basic", "premium", "enterprise"]


class User(BaseModel):
    id: str
    username: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    credits_used: int = 0
    subscription_tier: SubscriptionTier = "free"
    max_credits: int = 100
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def available_credits(self) -> int:
        return max(self.max_credits - self.credits_used, 0)


class Project(BaseModel):
    id: str
    created_at: str
    user_id: str
    title: str
    content: str
    humanized_content: str | None = None
    credits_used: int = 0
    mode: Mode | None = None
    humanization_strength: int | None = None
    personality: Personality | None = None
    length_adjustment: LengthAdjustment | None = None
    humanization_document_id: str | None = None


class HumanizeOptions(BaseModel):
    humanization_strength: int | None = Field(default=None, ge=1, le=10)
    personality: Personality | None = None
    length_adjustment: LengthAdjustment | None = None


class HumanizeRequest(BaseModel):
    text: str
    mode: Mode = "standard"
    options: HumanizeOptions = Field(default_factory=HumanizeOptions)
    project_id: str | None = None
    title: str | None = None


class HumanizeResponse(BaseModel):
    humanized_text: str
    document_id: str
    credits_charged: int
    credits_used: int
    max_credits: int
    project: Project


class JobStatusResponse(BaseModel):
    job_id: str
    user_id: str
    project_id: str | None = None
    status: str
    credits_required: int
    error: str | None = None
    failure_reason_code: str | None = None
    created_at: str
    updated_at: str


class SignupRequest(BaseModel):
    username: str
    full_name: str | None = None
    avatar_url: str | None = None


class SubscriptionRequest(BaseModel):
    tier: SubscriptionTier


class ProjectCreateRequest(BaseModel):
    title: str = "Untitled Project"
    content: str


class ProjectUpdateRequest(BaseModel):
    # humanized_content is only written when a job completes
    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    content: str | None = None
    mode: Mode | None = None
    humanization_strength: int | None = Field(default=None, ge=1, le=10)
    personality: Personality | None = None
    length_adjustment: LengthAdjustment | None = None

    @field_validator("title", "content")
    @classmethod
    def _not_null(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class CreditBalanceResponse(BaseModel):
    user_id: str
    credits_used: int
    max_credits: int
    available_credits: int
    subscription_tier: SubscriptionTier


class AdminResetRequest(BaseModel):
    user_id: str | None = None
    note: str = "monthly reset"
