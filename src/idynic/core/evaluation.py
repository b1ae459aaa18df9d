from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from difflib import SequenceMatcher
from typing import Any

from idynic.db.models import IdentityClaim
from idynic.db.repositories import Repository
from idynic.types import ClaimGroundingIssue, ResumeData, TailoringEvaluation

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ClaimEvalResult:
    issues_found: int
    sampled: int
    grounding_ran: bool


def label_similarity(left: str, right: str) -> float:
    left = left.strip().lower()
    right = right.strip().lower()
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return SequenceMatcher(None, left, right).ratio()


def find_duplicate_claims(claims: list[IdentityClaim], threshold: float = 0.85) -> list[ClaimGroundingIssue]:
    """Flag the newer claim of each near-identical pair with the same type."""
    issues: list[ClaimGroundingIssue] = []
    flagged: set[int] = set()

    for index, first in enumerate(claims):
        if first.id in flagged:
            continue
        for second in claims[index + 1 :]:
            if second.id in flagged or first.type != second.type:
                continue
            if label_similarity(first.label, second.label) < threshold:
                continue

            duplicate, original = (first, second) if _newer(first, second) else (second, first)
            issues.append(
                ClaimGroundingIssue(
                    claim_id=duplicate.id,
                    issue_type="duplicate",
                    severity="warning",
                    message=f'Possible duplicate of "{original.label}"',
                    related_claim_id=original.id,
                )
            )
            flagged.add(duplicate.id)
            if duplicate.id == first.id:
                break
    return issues


def find_missing_fields(claims: list[IdentityClaim]) -> list[ClaimGroundingIssue]:
    issues: list[ClaimGroundingIssue] = []
    for claim in claims:
        if not (claim.type or "").strip():
            issues.append(
                ClaimGroundingIssue(
                    claim_id=claim.id,
                    issue_type="missing_field",
                    severity="error",
                    message="Claim is missing a type (skill, achievement, or attribute)",
                )
            )
        if not (claim.label or "").strip():
            issues.append(
                ClaimGroundingIssue(
                    claim_id=claim.id,
                    issue_type="missing_field",
                    severity="error",
                    message="Claim is missing a label",
                )
            )
    return issues


def sample_claims(
    claims: list[IdentityClaim],
    evidence_counts: dict[int, int],
    limit: int,
) -> list[IdentityClaim]:
    """Fewest supporting evidence first, newest first among ties."""
    ordered = sorted(
        claims,
        key=lambda claim: (evidence_counts.get(claim.id, 0), -_timestamp(claim.created_at), -claim.id),
    )
    return ordered[:limit]


def evaluate_claims(
    repo: Repository,
    llm,
    *,
    user_id: int,
    touched_claim_ids: list[int],
    sample_size: int = 5,
    duplicate_threshold: float = 0.85,
) -> ClaimEvalResult:
    """Run rule checks over all claims and AI grounding over a sample of this run's claims.

    A grounding failure marks each sampled claim ``unevaluated`` instead of raising.
    """
    claims = repo.list_claims(user_id)
    issues = find_duplicate_claims(claims, duplicate_threshold) + find_missing_fields(claims)

    touched = set(touched_claim_ids)
    candidates = [claim for claim in claims if claim.id in touched]
    counts = repo.claim_evidence_counts([claim.id for claim in candidates])
    sampled = sample_claims(candidates, counts, sample_size)

    grounding_ran = False
    if sampled:
        payload = [_grounding_payload(repo, claim) for claim in sampled]
        try:
            issues.extend(llm.ground_claims(claims=payload))
            grounding_ran = True
        except Exception as exc:
            logger.warning("Claim grounding failed for user_id=%s: %s", user_id, exc)
            issues.extend(
                ClaimGroundingIssue(
                    claim_id=claim.id,
                    issue_type="unevaluated",
                    severity="info",
                    message="Claim could not be evaluated",
                )
                for claim in sampled
            )

    stored = repo.replace_claim_issues(
        user_id=user_id,
        claim_ids=[claim.id for claim in claims],
        issues=issues,
    )
    logger.info(
        "Claim evaluation user_id=%s claims=%s sampled=%s issues=%s", user_id, len(claims), len(sampled), stored
    )
    return ClaimEvalResult(issues_found=stored, sampled=len(sampled), grounding_ran=grounding_ran)


def evaluate_tailoring(
    llm,
    *,
    narrative: str,
    resume: ResumeData,
    claims: list[dict[str, Any]],
    requirements: list[dict[str, Any]],
) -> TailoringEvaluation:
    try:
        return llm.evaluate_tailoring(
            narrative=narrative,
            resume=resume,
            claims=claims,
            requirements=requirements,
        )
    except Exception as exc:
        logger.warning("Tailoring evaluation failed: %s", exc)
        return TailoringEvaluation(passed=False, hallucinations=["Evaluation failed"])


def _grounding_payload(repo: Repository, claim: IdentityClaim) -> dict[str, Any]:
    return {
        "id": claim.id,
        "label": claim.label,
        "description": claim.description,
        "evidence": [
            {"text": evidence.text, "strength": link.strength}
            for link, evidence in repo.claim_support(claim.id)
        ],
    }


def _newer(first: IdentityClaim, second: IdentityClaim) -> bool:
    left, right = _timestamp(first.created_at), _timestamp(second.created_at)
    if left == right:
        return first.id > second.id
    return left > right


def _timestamp(value: datetime | None) -> float:
    return value.timestamp() if value else 0.0
