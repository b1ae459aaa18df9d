from __future__ import annotations

import logging

from idynic.db.models import IdentityClaim
from idynic.db.repositories import Repository
from idynic.types import IdentityReflection

logger = logging.getLogger(__name__)

ARCHETYPES = (
    "Builder",
    "Optimizer",
    "Connector",
    "Guide",
    "Stabilizer",
    "Specialist",
    "Strategist",
    "Advocate",
    "Investigator",
    "Performer",
)

# Minimum claim count before a field is worth generating.
FIELD_THRESHOLDS = {
    "headline": 1,
    "archetype": 1,
    "keywords": 3,
    "bio": 5,
    "matches": 10,
}


def allowed_fields(claim_count: int) -> list[str]:
    return [name for name, minimum in FIELD_THRESHOLDS.items() if claim_count >= minimum]


def sanitize_reflection(reflection: IdentityReflection, fields: list[str]) -> IdentityReflection:
    archetype = reflection.archetype
    if archetype is not None:
        archetype = next((name for name in ARCHETYPES if name.lower() == archetype.strip().lower()), None)

    return IdentityReflection(
        headline=reflection.headline if "headline" in fields else None,
        bio=reflection.bio if "bio" in fields else None,
        archetype=archetype if "archetype" in fields else None,
        keywords=list(reflection.keywords)[:10] if "keywords" in fields else [],
        matches=list(reflection.matches)[:5] if "matches" in fields else [],
    )


def reflect_identity(repo: Repository, llm, *, user_id: int, claim_limit: int = 50) -> IdentityReflection | None:
    """Recompute the identity snapshot on the profile from the owner's top claims.

    Returns the stored reflection, or ``None`` when the owner has no claims and the
    snapshot was cleared.
    """
    claims = repo.top_claims(user_id, claim_limit)
    if not claims:
        repo.update_identity(user_id, None)
        logger.info("Cleared identity snapshot user_id=%s (no claims)", user_id)
        return None

    fields = allowed_fields(len(claims))
    reflection = llm.reflect_identity(
        claims=[_claim_payload(claim) for claim in claims],
        fields=fields,
        archetypes=ARCHETYPES,
    )
    reflection = sanitize_reflection(reflection, fields)
    repo.update_identity(user_id, reflection)
    logger.info("Reflected identity user_id=%s claims=%s archetype=%s", user_id, len(claims), reflection.archetype)
    return reflection


def _claim_payload(claim: IdentityClaim) -> dict:
    return {
        "label": claim.label,
        "type": claim.type,
        "confidence": float(claim.confidence or 0.0),
        "description": claim.description or "",
    }
