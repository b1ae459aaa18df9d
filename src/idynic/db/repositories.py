from __future__ import annotations

import hashlib
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.orm import Session

from idynic.db.models import (
    ClaimEvidence,
    ClaimIssue,
    Document,
    Evidence,
    IdentityClaim,
    Job,
    JobStep,
    Opportunity,
    Profile,
    TailoredProfile,
    TailoringEvalLog,
    UsageTracking,
    WorkHistory,
)
from idynic.llm.embeddings import cosine_similarity
from idynic.types import (
    ClaimGroundingIssue,
    EvidenceItem,
    ExtractedJob,
    IdentityReflection,
    PostingExtraction,
    ResumeContact,
    TailoringEvaluation,
)


def normalize_text(value: str) -> str:
    return " ".join(value.strip().lower().split())


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def month_start(today: date | None = None) -> date:
    today = today or datetime.now(UTC).date()
    return today.replace(day=1)


class Repository:
    def __init__(self, session: Session):
        self.session = session

    # profiles

    def create_profile(self, name: str, email: str = "") -> Profile:
        profile = Profile(name=name, email=email)
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return profile

    def get_profile(self, user_id: int) -> Profile | None:
        return self.session.get(Profile, user_id)

    def update_profile_contact(self, user_id: int, contact: ResumeContact) -> list[str]:
        """Fill empty contact fields from a parsed resume; never overwrites user data."""
        profile = self.session.get(Profile, user_id)
        if not profile:
            raise ValueError(f"profile {user_id} not found")

        updated: list[str] = []
        for key, value in contact.model_dump().items():
            if value and not getattr(profile, key):
                setattr(profile, key, value)
                updated.append(key)

        self.session.commit()
        return updated

    def update_identity(self, user_id: int, reflection: IdentityReflection | None) -> Profile:
        profile = self.session.get(Profile, user_id)
        if not profile:
            raise ValueError(f"profile {user_id} not found")

        reflection = reflection or IdentityReflection()
        profile.identity_headline = reflection.headline
        profile.identity_bio = reflection.bio
        profile.identity_archetype = reflection.archetype
        profile.identity_keywords = list(reflection.keywords)
        profile.identity_matches = list(reflection.matches)
        profile.identity_generated_at = datetime.now(UTC)
        self.session.commit()
        self.session.refresh(profile)
        return profile

    # jobs

    def create_job(
        self,
        *,
        user_id: int,
        job_type: str,
        content_hash: str | None = None,
        filename: str | None = None,
    ) -> Job:
        job = Job(
            user_id=user_id,
            job_type=job_type,
            status="pending",
            content_hash=content_hash,
            filename=filename,
            highlights=[],
            phase_history=[],
        )
        self.session.add(job)
        self.session.commit()
        self.session.refresh(job)
        return job

    def get_job(self, job_id: int, *, fresh: bool = False) -> Job | None:
        if fresh:
            statement = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
            return self.session.scalar(statement)
        return self.session.get(Job, job_id)

    def list_jobs(self, user_id: int, limit: int = 50) -> list[Job]:
        statement = select(Job).where(Job.user_id == user_id).order_by(Job.id.desc()).limit(limit)
        return list(self.session.scalars(statement).all())

    def compare_and_swap_job(self, job_id: int, expected_version: int, values: dict[str, Any]) -> bool:
        statement = (
            update(Job)
            .where(and_(Job.id == job_id, Job.version == expected_version))
            .values(**values, version=expected_version + 1, updated_at=datetime.now(UTC))
        )
        result = self.session.execute(statement)
        self.session.commit()
        return result.rowcount == 1

    # step checkpoints

    def get_step(self, job_id: int, name: str) -> JobStep | None:
        return self.session.scalar(select(JobStep).where(and_(JobStep.job_id == job_id, JobStep.name == name)))

    def save_step(self, *, job_id: int, name: str, output: Any, attempt: int, duration_ms: int) -> JobStep:
        existing = self.get_step(job_id, name)
        if existing:
            return existing

        step = JobStep(job_id=job_id, name=name, output_json=output, attempt=attempt, duration_ms=duration_ms)
        self.session.add(step)
        self.session.commit()
        self.session.refresh(step)
        return step

    def list_steps(self, job_id: int) -> list[JobStep]:
        statement = select(JobStep).where(JobStep.job_id == job_id).order_by(JobStep.id.asc())
        return list(self.session.scalars(statement).all())

    # documents

    def create_document(
        self,
        *,
        user_id: int,
        job_id: int,
        type: str,
        content_hash: str,
        raw_text: str,
        filename: str = "",
        storage_path: str = "",
    ) -> Document:
        existing = self.session.scalar(
            select(Document).where(and_(Document.user_id == user_id, Document.job_id == job_id))
        )
        if existing:
            return existing

        document = Document(
            user_id=user_id,
            job_id=job_id,
            type=type,
            content_hash=content_hash,
            raw_text=raw_text,
            filename=filename,
            storage_path=storage_path,
            status="processing",
        )
        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        return document

    def get_document_for_job(self, job_id: int) -> Document | None:
        return self.session.scalar(select(Document).where(Document.job_id == job_id))

    def find_document_by_hash(
        self,
        *,
        user_id: int,
        content_hash: str,
        document_type: str,
        exclude_job_id: int | None = None,
    ) -> Document | None:
        conditions = [
            Document.user_id == user_id,
            Document.content_hash == content_hash,
            Document.type == document_type,
        ]
        if exclude_job_id is not None:
            conditions.append(Document.job_id != exclude_job_id)
        statement = select(Document).where(and_(*conditions)).order_by(Document.id.asc())
        return self.session.scalar(statement)

    def set_document_status(self, document_id: int, status: str) -> None:
        document = self.session.get(Document, document_id)
        if not document:
            return
        document.status = status
        self.session.commit()

    # work history

    def list_work_history(self, *, user_id: int, document_id: int | None = None) -> list[WorkHistory]:
        conditions = [WorkHistory.user_id == user_id]
        if document_id is not None:
            conditions.append(WorkHistory.document_id == document_id)
        statement = select(WorkHistory).where(and_(*conditions)).order_by(WorkHistory.order_index.asc())
        return list(self.session.scalars(statement).all())

    def store_work_history(self, *, user_id: int, document_id: int, jobs: list[ExtractedJob]) -> list[WorkHistory]:
        existing = self.list_work_history(user_id=user_id, document_id=document_id)
        if existing:
            return existing

        for index, item in enumerate(jobs):
            self.session.add(
                WorkHistory(
                    user_id=user_id,
                    document_id=document_id,
                    company=item.company,
                    company_domain=item.company_domain,
                    title=item.title,
                    start_date=item.start_date,
                    end_date=item.end_date,
                    location=item.location,
                    summary=item.summary,
                    entry_type=item.entry_type,
                    order_index=index,
                )
            )
        self.session.commit()
        return self.list_work_history(user_id=user_id, document_id=document_id)

    # evidence

    def store_evidence(
        self,
        *,
        user_id: int,
        document_id: int,
        items: list[EvidenceItem],
        embeddings: list[list[float]],
        evidence_dates: list[date | None],
    ) -> list[Evidence]:
        if len(items) != len(embeddings):
            raise ValueError("embedding count does not match evidence count")

        existing = {row.text_hash for row in self.list_evidence_for_document(document_id)}
        for item, vector, evidence_date in zip(items, embeddings, evidence_dates):
            text_hash = hash_text(normalize_text(item.text))
            if text_hash in existing:
                continue
            existing.add(text_hash)
            self.session.add(
                Evidence(
                    user_id=user_id,
                    document_id=document_id,
                    evidence_type=item.type,
                    text=item.text,
                    text_hash=text_hash,
                    source_type=item.source_type,
                    evidence_date=evidence_date,
                    context_json=item.context.model_dump() if item.context else {},
                    embedding=vector,
                )
            )
        self.session.commit()
        return self.list_evidence_for_document(document_id)

    def list_evidence_for_document(self, document_id: int) -> list[Evidence]:
        statement = select(Evidence).where(Evidence.document_id == document_id).order_by(Evidence.id.asc())
        return list(self.session.scalars(statement).all())

    def list_evidence(self, evidence_ids: list[int]) -> list[Evidence]:
        if not evidence_ids:
            return []
        statement = select(Evidence).where(Evidence.id.in_(evidence_ids)).order_by(Evidence.id.asc())
        return list(self.session.scalars(statement).all())

    def link_evidence_to_work_history(self, links: dict[int, int]) -> int:
        linked = 0
        for evidence_id, work_history_id in links.items():
            evidence = self.session.get(Evidence, evidence_id)
            if evidence and evidence.work_history_id != work_history_id:
                evidence.work_history_id = work_history_id
                linked += 1
        self.session.commit()
        return linked

    # claims

    def list_claims(self, user_id: int) -> list[IdentityClaim]:
        statement = select(IdentityClaim).where(IdentityClaim.user_id == user_id).order_by(IdentityClaim.id.asc())
        return list(self.session.scalars(statement).all())

    def count_claims(self, user_id: int) -> int:
        statement = select(func.count(IdentityClaim.id)).where(IdentityClaim.user_id == user_id)
        return int(self.session.scalar(statement) or 0)

    def get_claim(self, claim_id: int) -> IdentityClaim | None:
        return self.session.get(IdentityClaim, claim_id)

    def top_claims(self, user_id: int, limit: int) -> list[IdentityClaim]:
        statement = (
            select(IdentityClaim)
            .where(IdentityClaim.user_id == user_id)
            .order_by(IdentityClaim.confidence.desc(), IdentityClaim.id.asc())
            .limit(limit)
        )
        return list(self.session.scalars(statement).all())

    def find_claim_by_label(self, user_id: int, label: str) -> IdentityClaim | None:
        statement = select(IdentityClaim).where(
            and_(IdentityClaim.user_id == user_id, IdentityClaim.label == label)
        )
        return self.session.scalar(statement)

    def find_similar_claims(
        self,
        *,
        user_id: int,
        embedding: list[float],
        threshold: float,
        limit: int,
    ) -> list[tuple[IdentityClaim, float]]:
        scored = []
        for claim in self.list_claims(user_id):
            if not claim.embedding:
                continue
            similarity = cosine_similarity(embedding, claim.embedding)
            if similarity >= threshold:
                scored.append((claim, similarity))
        scored.sort(key=lambda pair: (-pair[1], pair[0].id))
        return scored[:limit]

    def create_claim(
        self,
        *,
        user_id: int,
        type: str,
        label: str,
        description: str,
        embedding: list[float] | None,
        confidence: float = 0.5,
    ) -> IdentityClaim:
        claim = IdentityClaim(
            user_id=user_id,
            type=type,
            label=label,
            description=description,
            embedding=embedding,
            confidence=confidence,
        )
        self.session.add(claim)
        self.session.commit()
        self.session.refresh(claim)
        return claim

    def update_claim(self, claim_id: int, *, confidence: float | None = None, description: str | None = None) -> None:
        claim = self.session.get(IdentityClaim, claim_id)
        if not claim:
            return
        if confidence is not None:
            claim.confidence = confidence
        if description:
            claim.description = description
        self.session.commit()

    def link_claim_evidence(self, *, claim_id: int, evidence_id: int, strength: str) -> bool:
        existing = self.session.scalar(
            select(ClaimEvidence).where(
                and_(ClaimEvidence.claim_id == claim_id, ClaimEvidence.evidence_id == evidence_id)
            )
        )
        if existing:
            return False

        self.session.add(ClaimEvidence(claim_id=claim_id, evidence_id=evidence_id, strength=strength))
        self.session.commit()
        return True

    def claim_support(self, claim_id: int) -> list[tuple[ClaimEvidence, Evidence]]:
        statement = (
            select(ClaimEvidence, Evidence)
            .join(Evidence, Evidence.id == ClaimEvidence.evidence_id)
            .where(ClaimEvidence.claim_id == claim_id)
            .order_by(Evidence.id.asc())
        )
        return [(row[0], row[1]) for row in self.session.execute(statement).all()]

    def claim_evidence_counts(self, claim_ids: list[int]) -> dict[int, int]:
        if not claim_ids:
            return {}
        statement = (
            select(ClaimEvidence.claim_id, func.count(ClaimEvidence.id))
            .where(ClaimEvidence.claim_id.in_(claim_ids))
            .group_by(ClaimEvidence.claim_id)
        )
        counts = {claim_id: 0 for claim_id in claim_ids}
        for claim_id, count in self.session.execute(statement).all():
            counts[claim_id] = int(count)
        return counts

    def claims_for_evidence(self, evidence_ids: list[int]) -> list[int]:
        if not evidence_ids:
            return []
        statement = (
            select(ClaimEvidence.claim_id)
            .where(ClaimEvidence.evidence_id.in_(evidence_ids))
            .distinct()
            .order_by(ClaimEvidence.claim_id.asc())
        )
        return list(self.session.scalars(statement).all())

    def replace_claim_issues(self, *, user_id: int, claim_ids: list[int], issues: list[ClaimGroundingIssue]) -> int:
        if claim_ids:
            self.session.execute(
                delete(ClaimIssue).where(
                    and_(ClaimIssue.claim_id.in_(claim_ids), ClaimIssue.dismissed.is_(False))
                )
            )
        for issue in issues:
            self.session.add(
                ClaimIssue(
                    user_id=user_id,
                    claim_id=issue.claim_id,
                    issue_type=issue.issue_type,
                    severity=issue.severity,
                    message=issue.message,
                    related_claim_id=issue.related_claim_id,
                )
            )
        self.session.commit()
        return len(issues)

    def list_claim_issues(self, user_id: int) -> list[ClaimIssue]:
        statement = select(ClaimIssue).where(ClaimIssue.user_id == user_id).order_by(ClaimIssue.id.asc())
        return list(self.session.scalars(statement).all())

    # opportunities

    def create_opportunity(
        self,
        *,
        user_id: int,
        job_id: int,
        extraction: PostingExtraction,
        description: str,
        url: str | None,
        normalized_url: str | None,
        embedding: list[float] | None,
        source: str,
    ) -> Opportunity:
        existing = self.session.scalar(
            select(Opportunity).where(and_(Opportunity.user_id == user_id, Opportunity.job_id == job_id))
        )
        if existing:
            return existing

        opportunity = Opportunity(
            user_id=user_id,
            job_id=job_id,
            title=extraction.title,
            company=extraction.company,
            url=url,
            normalized_url=normalized_url,
            description=description,
            location=extraction.location,
            employment_type=extraction.employment_type,
            requirements_json=extraction.requirements.model_dump(by_alias=True),
            responsibilities_json=list(extraction.responsibilities),
            embedding=embedding,
            source=source,
        )
        self.session.add(opportunity)
        self.session.commit()
        self.session.refresh(opportunity)
        return opportunity

    def get_opportunity(self, opportunity_id: int, *, user_id: int | None = None) -> Opportunity | None:
        opportunity = self.session.get(Opportunity, opportunity_id)
        if opportunity is None:
            return None
        if user_id is not None and opportunity.user_id != user_id:
            return None
        return opportunity

    def find_opportunity_by_url(
        self,
        *,
        user_id: int,
        normalized_url: str,
        exclude_job_id: int | None = None,
    ) -> Opportunity | None:
        conditions = [Opportunity.user_id == user_id, Opportunity.normalized_url == normalized_url]
        if exclude_job_id is not None:
            conditions.append(Opportunity.job_id != exclude_job_id)
        statement = select(Opportunity).where(and_(*conditions)).order_by(Opportunity.id.asc())
        return self.session.scalar(statement)

    def save_company_research(self, opportunity_id: int, research: dict[str, Any]) -> None:
        opportunity = self.session.get(Opportunity, opportunity_id)
        if not opportunity:
            return
        opportunity.company_research_json = research
        self.session.commit()

    # tailored profiles

    def get_tailored_profile(self, *, user_id: int, opportunity_id: int) -> TailoredProfile | None:
        statement = select(TailoredProfile).where(
            and_(TailoredProfile.user_id == user_id, TailoredProfile.opportunity_id == opportunity_id)
        )
        return self.session.scalar(statement)

    def get_tailored_profile_by_id(self, profile_id: int) -> TailoredProfile | None:
        return self.session.get(TailoredProfile, profile_id)

    def delete_tailored_profile(self, *, user_id: int, opportunity_id: int) -> bool:
        existing = self.get_tailored_profile(user_id=user_id, opportunity_id=opportunity_id)
        if existing is None:
            return False

        # SQLite does not enforce ON DELETE CASCADE without the foreign_keys pragma.
        self.session.execute(delete(TailoringEvalLog).where(TailoringEvalLog.tailored_profile_id == existing.id))
        result = self.session.execute(delete(TailoredProfile).where(TailoredProfile.id == existing.id))
        self.session.commit()
        return result.rowcount > 0

    def upsert_tailored_profile(
        self,
        *,
        user_id: int,
        opportunity_id: int,
        talking_points: dict[str, Any],
        narrative: str,
        resume_data: dict[str, Any],
    ) -> TailoredProfile:
        existing = self.get_tailored_profile(user_id=user_id, opportunity_id=opportunity_id)
        if existing:
            existing.talking_points_json = talking_points
            existing.narrative = narrative
            existing.resume_data_json = resume_data
            obj = existing
        else:
            obj = TailoredProfile(
                user_id=user_id,
                opportunity_id=opportunity_id,
                talking_points_json=talking_points,
                narrative=narrative,
                resume_data_json=resume_data,
            )
            self.session.add(obj)

        self.session.commit()
        self.session.refresh(obj)
        return obj

    def add_eval_log(
        self,
        *,
        tailored_profile_id: int,
        user_id: int,
        evaluation: TailoringEvaluation,
    ) -> TailoringEvalLog:
        log = TailoringEvalLog(
            tailored_profile_id=tailored_profile_id,
            user_id=user_id,
            passed=evaluation.passed,
            grounding_passed=evaluation.grounding_passed,
            hallucinations=list(evaluation.hallucinations),
            missed_opportunities=list(evaluation.missed_opportunities),
            gaps=list(evaluation.gaps),
            eval_model=evaluation.eval_model,
            eval_cost_cents=evaluation.eval_cost_cents,
        )
        self.session.add(log)
        self.session.commit()
        self.session.refresh(log)
        return log

    def latest_eval_log(self, tailored_profile_id: int) -> TailoringEvalLog | None:
        statement = (
            select(TailoringEvalLog)
            .where(TailoringEvalLog.tailored_profile_id == tailored_profile_id)
            .order_by(TailoringEvalLog.id.desc())
        )
        return self.session.scalar(statement)

    # usage

    def increment_usage(self, user_id: int, field: str, today: date | None = None) -> UsageTracking:
        if field not in {"uploads_count", "tailored_profiles_count"}:
            raise ValueError(f"unknown usage counter {field}")

        period_start = month_start(today)
        row = self.session.scalar(
            select(UsageTracking).where(
                and_(UsageTracking.user_id == user_id, UsageTracking.period_start == period_start)
            )
        )
        if row is None:
            row = UsageTracking(user_id=user_id, period_start=period_start, uploads_count=0, tailored_profiles_count=0)
            self.session.add(row)
            self.session.flush()

        setattr(row, field, getattr(row, field) + 1)
        self.session.commit()
        self.session.refresh(row)
        return row

    def get_usage(self, user_id: int, today: date | None = None) -> UsageTracking | None:
        statement = select(UsageTracking).where(
            and_(UsageTracking.user_id == user_id, UsageTracking.period_start == month_start(today))
        )
        return self.session.scalar(statement)
