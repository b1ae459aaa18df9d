from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from idynic.db.base import Base, TimestampMixin


class Profile(TimestampMixin, Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    email: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    phone: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    location: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    linkedin: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    github: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    website: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    identity_headline: Mapped[str | None] = mapped_column(String(255), nullable=True)
    identity_bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    identity_archetype: Mapped[str | None] = mapped_column(String(80), nullable=True)
    identity_keywords: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    identity_matches: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    identity_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Document(TimestampMixin, Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    job_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    storage_path: Mapped[str] = mapped_column(String(600), default="", nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="processing", nullable=False)


class WorkHistory(TimestampMixin, Base):
    __tablename__ = "work_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    company_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    end_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_type: Mapped[str] = mapped_column(String(40), default="work", nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Evidence(TimestampMixin, Base):
    __tablename__ = "evidence"
    __table_args__ = (UniqueConstraint("document_id", "text_hash", name="uq_evidence_document_text"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    work_history_id: Mapped[int | None] = mapped_column(
        ForeignKey("work_history.id", ondelete="SET NULL"), nullable=True
    )
    evidence_type: Mapped[str] = mapped_column(String(40), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    text_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    source_type: Mapped[str] = mapped_column(String(40), default="resume", nullable=False)
    evidence_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    context_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)


class IdentityClaim(TimestampMixin, Base):
    __tablename__ = "identity_claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    confidence: Mapped[float] = mapped_column(Float, default=0.5, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)


class ClaimEvidence(TimestampMixin, Base):
    __tablename__ = "claim_evidence"
    __table_args__ = (UniqueConstraint("claim_id", "evidence_id", name="uq_claim_evidence"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    claim_id: Mapped[int] = mapped_column(ForeignKey("identity_claims.id", ondelete="CASCADE"), index=True)
    evidence_id: Mapped[int] = mapped_column(ForeignKey("evidence.id", ondelete="CASCADE"), index=True)
    strength: Mapped[str] = mapped_column(String(20), default="medium", nullable=False)


class ClaimIssue(TimestampMixin, Base):
    __tablename__ = "claim_issues"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    claim_id: Mapped[int] = mapped_column(ForeignKey("identity_claims.id", ondelete="CASCADE"), index=True)
    issue_type: Mapped[str] = mapped_column(String(40), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), default="warning", nullable=False)
    message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    related_claim_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dismissed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Opportunity(TimestampMixin, Base):
    __tablename__ = "opportunities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    job_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(String(800), nullable=True)
    normalized_url: Mapped[str | None] = mapped_column(String(800), nullable=True, index=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    employment_type: Mapped[str | None] = mapped_column(String(80), nullable=True)
    requirements_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    responsibilities_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)
    source: Mapped[str] = mapped_column(String(40), default="manual", nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="tracking", nullable=False)
    company_research_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class TailoredProfile(TimestampMixin, Base):
    __tablename__ = "tailored_profiles"
    # ids are never reused, so a regenerated profile is distinguishable from the one it replaced
    __table_args__ = (
        UniqueConstraint("user_id", "opportunity_id", name="uq_tailored_profile"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    opportunity_id: Mapped[int] = mapped_column(ForeignKey("opportunities.id", ondelete="CASCADE"), index=True)
    talking_points_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    narrative: Mapped[str] = mapped_column(Text, default="", nullable=False)
    resume_data_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class TailoringEvalLog(TimestampMixin, Base):
    __tablename__ = "tailoring_eval_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tailored_profile_id: Mapped[int] = mapped_column(
        ForeignKey("tailored_profiles.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    passed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    grounding_passed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hallucinations: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    missed_opportunities: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    gaps: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    eval_model: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    eval_cost_cents: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)


class UsageTracking(TimestampMixin, Base):
    __tablename__ = "usage_tracking"
    __table_args__ = (UniqueConstraint("user_id", "period_start", name="uq_usage_period"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    uploads_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tailored_profiles_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Job(TimestampMixin, Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    job_type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="pending", nullable=False)
    phase: Mapped[str | None] = mapped_column(String(40), nullable=True)
    phase_history: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    progress: Mapped[str | None] = mapped_column(String(80), nullable=True)
    highlights: Mapped[list[dict[str, str]]] = mapped_column(JSON, default=list, nullable=False)
    warning: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    opportunity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tailored_profile_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class JobStep(TimestampMixin, Base):
    __tablename__ = "job_steps"
    __table_args__ = (UniqueConstraint("job_id", "name", name="uq_job_step"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    output_json: Mapped[Any] = mapped_column(JSON, nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
