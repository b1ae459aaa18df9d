from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

EvidenceType = Literal["accomplishment", "skill_listed", "trait_indicator", "education", "certification"]
SourceType = Literal["resume", "story", "certification", "inferred"]
ClaimType = Literal["skill", "achievement", "attribute", "education", "certification"]
Strength = Literal["weak", "medium", "strong"]
HighlightKind = Literal["found", "created", "updated"]
RequirementType = Literal["education", "certification", "skill", "experience"]

EVIDENCE_TO_CLAIM_TYPE: dict[str, ClaimType] = {
    "skill_listed": "skill",
    "accomplishment": "achievement",
    "trait_indicator": "attribute",
    "education": "education",
    "certification": "certification",
}


class ModelResponse(BaseModel):
    content: str
    raw: dict[str, Any] = Field(default_factory=dict)


class Highlight(BaseModel):
    text: str
    kind: HighlightKind = "found"


class EvidenceContext(BaseModel):
    role: str | None = None
    company: str | None = None
    dates: str | None = None
    institution: str | None = None
    year: str | None = None

    @field_validator("dates", "year", mode="before")
    @classmethod
    def coerce_numeric(cls, value: Any) -> Any:
        # models often answer "year": 2015
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value


class EvidenceItem(BaseModel):
    text: str
    type: EvidenceType
    context: EvidenceContext | None = None
    source_type: SourceType = "resume"

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("evidence text must not be empty")
        return value


class ExtractedJob(BaseModel):
    company: str
    company_domain: str | None = None
    title: str
    start_date: str = ""
    end_date: str | None = None
    location: str | None = None
    summary: str | None = None
    entry_type: Literal["work", "venture", "additional"] = "work"


class ResumeContact(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    location: str | None = None
    linkedin: str | None = None
    github: str | None = None
    website: str | None = None


class ClassifiedRequirement(BaseModel):
    text: str
    type: RequirementType = "skill"


class PostingRequirements(BaseModel):
    must_have: list[ClassifiedRequirement] = Field(default_factory=list, alias="mustHave")
    nice_to_have: list[ClassifiedRequirement] = Field(default_factory=list, alias="niceToHave")

    model_config = {"populate_by_name": True}


class PostingExtraction(BaseModel):
    title: str = "Unknown Position"
    company: str | None = None
    location: str | None = None
    employment_type: str | None = None
    requirements: PostingRequirements = Field(default_factory=PostingRequirements)
    responsibilities: list[str] = Field(default_factory=list)

    @property
    def requirement_count(self) -> int:
        return len(self.requirements.must_have) + len(self.requirements.nice_to_have)


class NewClaim(BaseModel):
    type: ClaimType
    label: str
    description: str = ""


class SynthesisDecision(BaseModel):
    evidence_id: int
    match: str | None = None
    strength: Strength = "medium"
    new_claim: NewClaim | None = None


class IdentityReflection(BaseModel):
    headline: str | None = None
    bio: str | None = None
    archetype: str | None = None
    keywords: list[str] = Field(default_factory=list)
    matches: list[str] = Field(default_factory=list)


class ClaimGroundingIssue(BaseModel):
    claim_id: int
    issue_type: Literal["not_grounded", "weak_grounding", "unevaluated", "duplicate", "missing_field"]
    severity: Literal["info", "warning", "error"] = "warning"
    message: str = ""
    related_claim_id: int | None = None


class TalkingPointStrength(BaseModel):
    requirement: str
    requirement_type: str = "skill"
    claim_id: int | None = None
    claim_label: str = ""
    evidence_summary: str = ""
    framing: str = ""
    confidence: float = 0.0


class TalkingPointGap(BaseModel):
    requirement: str
    requirement_type: str = "skill"
    mitigation: str = ""
    related_claims: list[str] = Field(default_factory=list)


class TalkingPointInference(BaseModel):
    inferred_claim: str
    derived_from: list[str] = Field(default_factory=list)
    reasoning: str = ""


class TalkingPoints(BaseModel):
    strengths: list[TalkingPointStrength] = Field(default_factory=list)
    gaps: list[TalkingPointGap] = Field(default_factory=list)
    inferences: list[TalkingPointInference] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.strengths) + len(self.gaps) + len(self.inferences)


class ResumeExperience(BaseModel):
    work_history_id: int | None = None
    company: str
    title: str
    dates: str = ""
    location: str | None = None
    bullets: list[str] = Field(default_factory=list)


class ResumeEducation(BaseModel):
    institution: str
    degree: str = ""
    year: str | None = None


class ResumeData(BaseModel):
    summary: str = ""
    skills: list[str] = Field(default_factory=list)
    experience: list[ResumeExperience] = Field(default_factory=list)
    education: list[ResumeEducation] = Field(default_factory=list)


class TailoringEvaluation(BaseModel):
    passed: bool = False
    grounding_passed: bool = False
    hallucinations: list[str] = Field(default_factory=list)
    missed_opportunities: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    eval_model: str = ""
    eval_cost_cents: float = 0.0


class CompanyResearch(BaseModel):
    overview: str = ""
    culture: str = ""
    recent_news: list[str] = Field(default_factory=list)
    interview_tips: list[str] = Field(default_factory=list)


class ResumeTrigger(BaseModel):
    job_id: int
    user_id: int
    filename: str
    storage_location: str


class StoryTrigger(BaseModel):
    job_id: int
    user_id: int
    text: str
    content_hash: str


class OpportunityTrigger(BaseModel):
    job_id: int
    user_id: int
    url: str | None = None
    description: str | None = None


class TailorTrigger(BaseModel):
    job_id: int
    user_id: int
    opportunity_id: int
    regenerate: bool = False


class TailorRequestResult(BaseModel):
    cached: bool
    job_id: int | None = None
    profile_id: int | None = None
