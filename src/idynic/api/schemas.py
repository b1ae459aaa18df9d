from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProfileCreateRequest(BaseModel):
    name: str
    email: str = ""


class IdentityResponse(BaseModel):
    headline: str | None = None
    bio: str | None = None
    archetype: str | None = None
    keywords: list[str] = Field(default_factory=list)
    matches: list[str] = Field(default_factory=list)
    generated_at: datetime | None = None


class ProfileResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: str = ""
    location: str = ""
    linkedin: str = ""
    github: str = ""
    website: str = ""
    identity: IdentityResponse | None = None


class StorySubmitRequest(BaseModel):
    text: str


class OpportunitySubmitRequest(BaseModel):
    url: str | None = None
    description: str | None = None


class TailorRequest(BaseModel):
    regenerate: bool = False


class JobAcceptedResponse(BaseModel):
    job_id: int


class TailorResponse(BaseModel):
    cached: bool
    job_id: int | None = None
    profile_id: int | None = None


class HighlightResponse(BaseModel):
    text: str
    kind: str


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    job_type: str
    status: str
    phase: str | None = None
    phase_history: list[str] = Field(default_factory=list)
    progress: str | None = None
    highlights: list[HighlightResponse] = Field(default_factory=list)
    warning: str | None = None
    error: str | None = None
    summary: dict[str, Any] | None = None
    document_id: int | None = None
    opportunity_id: int | None = None
    tailored_profile_id: int | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    label: str
    description: str | None = None
    confidence: float


class EvaluationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    passed: bool
    grounding_passed: bool
    hallucinations: list[str] = Field(default_factory=list)
    missed_opportunities: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    eval_model: str = ""
    eval_cost_cents: float = 0.0


class TailoredProfileResponse(BaseModel):
    id: int
    opportunity_id: int
    talking_points: dict[str, Any] = Field(default_factory=dict)
    narrative: str = ""
    resume_data: dict[str, Any] = Field(default_factory=dict)
    evaluation: EvaluationResponse | None = None
