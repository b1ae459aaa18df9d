from __future__ import annotations

import logging
import re
from typing import Any

from idynic.db.models import Opportunity, WorkHistory
from idynic.db.repositories import Repository
from idynic.types import (
    ResumeData,
    ResumeEducation,
    ResumeExperience,
    TalkingPointGap,
    TalkingPoints,
    TalkingPointStrength,
)

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9+#.]+")
_STOPWORDS = {
    "and", "the", "with", "for", "you", "our", "are", "your", "will", "have", "has", "of", "in", "to",
    "a", "an", "or", "on", "at", "as", "be", "is", "experience", "years", "year", "strong", "ability",
    "skills", "knowledge", "working", "work",
}


def tokens(text: str) -> set[str]:
    return {word.strip(".") for word in _WORD.findall(text.lower()) if len(word) > 1 and word not in _STOPWORDS}


def opportunity_requirements(opportunity: Opportunity) -> list[dict[str, Any]]:
    requirements = opportunity.requirements_json or {}
    rows: list[dict[str, Any]] = []
    for key, priority in (("mustHave", "must_have"), ("niceToHave", "nice_to_have")):
        for item in requirements.get(key) or []:
            if isinstance(item, dict) and str(item.get("text", "")).strip():
                rows.append({"text": item["text"].strip(), "type": item.get("type", "skill"), "priority": priority})
            elif isinstance(item, str) and item.strip():
                rows.append({"text": item.strip(), "type": "skill", "priority": priority})
    return rows


def claims_with_evidence(repo: Repository, user_id: int, limit: int = 50) -> list[dict[str, Any]]:
    payload = []
    for claim in repo.top_claims(user_id, limit):
        payload.append(
            {
                "id": claim.id,
                "type": claim.type,
                "label": claim.label,
                "description": claim.description or "",
                "confidence": round(float(claim.confidence or 0.0), 2),
                "evidence": [evidence.text for _, evidence in repo.claim_support(claim.id)][:5],
            }
        )
    return payload


def work_history_payload(rows: list[WorkHistory]) -> list[dict[str, Any]]:
    return [
        {
            "id": row.id,
            "company": row.company,
            "title": row.title,
            "start_date": row.start_date,
            "end_date": row.end_date,
            "location": row.location,
            "summary": row.summary,
        }
        for row in rows
    ]


def generate_talking_points(
    llm,
    *,
    title: str,
    company: str,
    requirements: list[dict[str, Any]],
    claims: list[dict[str, Any]],
) -> TalkingPoints:
    generated = None
    if requirements and claims:
        generated = llm.generate_talking_points(title=title, company=company, requirements=requirements, claims=claims)
    if generated is not None:
        return generated
    return heuristic_talking_points(requirements, claims)


def heuristic_talking_points(requirements: list[dict[str, Any]], claims: list[dict[str, Any]]) -> TalkingPoints:
    """Pair each requirement with the claim sharing the most words; unmatched requirements become gaps."""
    claim_tokens = [(claim, tokens(f"{claim['label']} {claim.get('description', '')}")) for claim in claims]
    strengths: list[TalkingPointStrength] = []
    gaps: list[TalkingPointGap] = []

    for requirement in requirements:
        wanted = tokens(requirement["text"])
        best, best_overlap = None, 0
        for claim, words in claim_tokens:
            overlap = len(wanted & words)
            if overlap > best_overlap:
                best, best_overlap = claim, overlap

        if best is None:
            gaps.append(TalkingPointGap(requirement=requirement["text"], requirement_type=requirement["type"]))
            continue

        evidence = best.get("evidence") or []
        strengths.append(
            TalkingPointStrength(
                requirement=requirement["text"],
                requirement_type=requirement["type"],
                claim_id=best["id"],
                claim_label=best["label"],
                evidence_summary=evidence[0] if evidence else best.get("description", ""),
                framing=f"{best['label']} maps directly to \"{requirement['text']}\".",
                confidence=round(min(1.0, best_overlap / max(1, len(wanted))), 2),
            )
        )
    return TalkingPoints(strengths=strengths, gaps=gaps)


def generate_narrative(llm, *, title: str, company: str, talking_points: TalkingPoints) -> str:
    if not talking_points.strengths and not talking_points.gaps:
        return ""
    narrative = llm.generate_narrative(title=title, company=company, talking_points=talking_points)
    if narrative:
        return narrative
    return heuristic_narrative(title=title, company=company, talking_points=talking_points)


def heuristic_narrative(*, title: str, company: str, talking_points: TalkingPoints) -> str:
    labels = []
    for strength in talking_points.strengths:
        if strength.claim_label and strength.claim_label not in labels:
            labels.append(strength.claim_label)

    paragraphs = []
    if labels:
        paragraphs.append(
            f"I'm applying for the {title} role at {company} because it lines up with what I've done: "
            + ", ".join(labels[:5])
            + "."
        )
        examples = [strength.evidence_summary for strength in talking_points.strengths if strength.evidence_summary]
        if examples:
            paragraphs.append("For example: " + " ".join(examples[:3]))
    if talking_points.gaps:
        gaps = ", ".join(gap.requirement for gap in talking_points.gaps[:3])
        paragraphs.append(f"Where I have less direct experience ({gaps}), I learn quickly and build on adjacent work.")
    return "\n\n".join(paragraphs)


def generate_resume(
    llm,
    *,
    title: str,
    company: str,
    requirements: list[dict[str, Any]],
    work_history: list[dict[str, Any]],
    claims: list[dict[str, Any]],
    talking_points: TalkingPoints,
) -> ResumeData:
    resume = llm.generate_resume(
        title=title,
        company=company,
        requirements=requirements,
        work_history=work_history,
        claims=claims,
        talking_points=talking_points,
    )
    if resume is not None:
        return _drop_unknown_work_history(resume, work_history)
    return heuristic_resume(title=title, work_history=work_history, claims=claims, talking_points=talking_points)


def heuristic_resume(
    *,
    title: str,
    work_history: list[dict[str, Any]],
    claims: list[dict[str, Any]],
    talking_points: TalkingPoints,
) -> ResumeData:
    matched = [strength.claim_label for strength in talking_points.strengths if strength.claim_label]
    skills = list(dict.fromkeys(matched + [claim["label"] for claim in claims if claim["type"] == "skill"]))[:15]

    experience = [
        ResumeExperience(
            work_history_id=row["id"],
            company=row["company"],
            title=row["title"],
            dates=" - ".join(part for part in (row.get("start_date"), row.get("end_date") or "Present") if part),
            location=row.get("location"),
            bullets=[row["summary"]] if row.get("summary") else [],
        )
        for row in work_history
    ]
    education = [
        ResumeEducation(institution=claim.get("description") or claim["label"], degree=claim["label"])
        for claim in claims
        if claim["type"] == "education"
    ]

    summary = f"Candidate for {title}"
    if matched:
        summary += " with strengths in " + ", ".join(matched[:3])
    return ResumeData(summary=summary + ".", skills=skills, experience=experience, education=education)


def _drop_unknown_work_history(resume: ResumeData, work_history: list[dict[str, Any]]) -> ResumeData:
    known = {row["id"] for row in work_history}
    for entry in resume.experience:
        if entry.work_history_id is not None and entry.work_history_id not in known:
            logger.warning("Resume referenced unknown work_history_id=%s", entry.work_history_id)
            entry.work_history_id = None
    return resume
