from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from idynic.config import Settings
from idynic.core.confidence import EvidenceSignal, claim_confidence
from idynic.core.extraction import truncate
from idynic.db.models import Evidence, IdentityClaim
from idynic.db.repositories import Repository
from idynic.types import EVIDENCE_TO_CLAIM_TYPE, NewClaim, SynthesisDecision

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
ClaimUpdateCallback = Callable[[str, str], None]


@dataclass(slots=True)
class SynthesisResult:
    claims_created: int = 0
    claims_updated: int = 0
    touched_claim_ids: list[int] = field(default_factory=list)


class ClaimSynthesizer:
    """Folds newly stored evidence into the owner's claim set.

    Evidence is handled in batches: one similarity lookup per item, one model
    call per batch for match-or-create decisions. Items the model skipped fall
    back to the closest candidate claim or a new claim built from the evidence.
    Claims are keyed on label, so replaying a batch reuses earlier claims.
    """

    def __init__(self, repo: Repository, llm, settings: Settings):
        self.repo = repo
        self.llm = llm
        self.settings = settings

    def run(
        self,
        *,
        user_id: int,
        evidence: list[Evidence],
        on_progress: ProgressCallback | None = None,
        on_claim_update: ClaimUpdateCallback | None = None,
    ) -> SynthesisResult:
        result = SynthesisResult()
        total = len(evidence)
        processed = 0
        batch_size = max(1, self.settings.synthesis_batch_size)

        def item_done() -> None:
            nonlocal processed
            processed += 1
            if on_progress is not None:
                on_progress(processed, total)

        for offset in range(0, total, batch_size):
            batch = evidence[offset : offset + batch_size]
            touched = self._process_batch(
                user_id=user_id,
                batch=batch,
                result=result,
                on_claim_update=on_claim_update,
                on_item_done=item_done,
            )
            self._recalculate(touched)
            for claim_id in touched:
                if claim_id not in result.touched_claim_ids:
                    result.touched_claim_ids.append(claim_id)

        logger.info(
            "Synthesis done user_id=%s evidence=%s created=%s updated=%s",
            user_id,
            processed,
            result.claims_created,
            result.claims_updated,
        )
        return result

    def _process_batch(
        self,
        *,
        user_id: int,
        batch: list[Evidence],
        result: SynthesisResult,
        on_claim_update: ClaimUpdateCallback | None,
        on_item_done: Callable[[], None],
    ) -> list[int]:
        candidates_by_item: dict[int, list[tuple[IdentityClaim, float]]] = {}
        candidate_claims: dict[int, IdentityClaim] = {}
        for item in batch:
            similar = self.repo.find_similar_claims(
                user_id=user_id,
                embedding=item.embedding or [],
                threshold=self.settings.synthesis_similarity_threshold,
                limit=self.settings.synthesis_max_candidates,
            )
            candidates_by_item[item.id] = similar
            for claim, _ in similar:
                if len(candidate_claims) < self.settings.synthesis_max_candidates:
                    candidate_claims.setdefault(claim.id, claim)

        decisions = self._decide(batch, list(candidate_claims.values()))
        planned = {
            item.id: self._resolve(user_id, item, decisions.get(item.id), candidates_by_item[item.id])
            for item in batch
        }

        new_labels = [plan.new_claim.label for plan in planned.values() if plan.new_claim is not None]
        label_vectors = dict(zip(new_labels, self.llm.embed(new_labels))) if new_labels else {}

        touched: list[int] = []
        for item in batch:
            plan = planned[item.id]
            claim, action = self._apply(user_id, item, plan, label_vectors)
            if claim.id not in touched:
                touched.append(claim.id)
            if action == "created":
                result.claims_created += 1
            elif action == "updated":
                result.claims_updated += 1
            if on_claim_update is not None and action in {"created", "updated"}:
                on_claim_update(claim.label, action)
            on_item_done()
        return touched

    def _decide(self, batch: list[Evidence], candidates: list[IdentityClaim]) -> dict[int, SynthesisDecision]:
        payload = [
            {
                "id": item.id,
                "text": item.text,
                "type": item.evidence_type,
                "claim_type": EVIDENCE_TO_CLAIM_TYPE.get(item.evidence_type, "skill"),
            }
            for item in batch
        ]
        claims = [
            {"id": claim.id, "type": claim.type, "label": claim.label, "description": claim.description}
            for claim in candidates
        ]
        decisions = self.llm.synthesize_claims(evidence=payload, claims=claims)
        return {decision.evidence_id: decision for decision in decisions}

    def _resolve(
        self,
        user_id: int,
        item: Evidence,
        decision: SynthesisDecision | None,
        candidates: list[tuple[IdentityClaim, float]],
    ) -> SynthesisDecision:
        if decision is not None:
            if decision.match and self.repo.find_claim_by_label(user_id, decision.match):
                return decision
            if decision.new_claim is not None:
                return decision

        if candidates:
            best, _ = candidates[0]
            return SynthesisDecision(evidence_id=item.id, match=best.label, strength="medium")

        claim_type = EVIDENCE_TO_CLAIM_TYPE.get(item.evidence_type, "skill")
        return SynthesisDecision(
            evidence_id=item.id,
            strength="medium",
            new_claim=NewClaim(type=claim_type, label=truncate(item.text, 60), description=item.text),
        )

    def _apply(
        self,
        user_id: int,
        item: Evidence,
        plan: SynthesisDecision,
        label_vectors: dict[str, list[float]],
    ) -> tuple[IdentityClaim, str]:
        label = plan.match or (plan.new_claim.label if plan.new_claim else "")
        claim = self.repo.find_claim_by_label(user_id, label)
        action = "updated"

        if claim is None and plan.new_claim is not None:
            claim = self.repo.create_claim(
                user_id=user_id,
                type=plan.new_claim.type,
                label=plan.new_claim.label,
                description=plan.new_claim.description,
                embedding=label_vectors.get(plan.new_claim.label, item.embedding),
            )
            action = "created"

        if claim is None:
            raise ValueError(f"synthesis plan for evidence {item.id} names no claim")

        linked = self.repo.link_claim_evidence(claim_id=claim.id, evidence_id=item.id, strength=plan.strength)
        if action == "updated" and not linked:
            action = "unchanged"
        return claim, action

    def _recalculate(self, claim_ids: list[int]) -> None:
        for claim_id in claim_ids:
            claim = self.repo.get_claim(claim_id)
            if claim is None:
                continue
            signals = [
                EvidenceSignal(strength=link.strength, source_type=evidence.source_type, evidence_date=evidence.evidence_date)
                for link, evidence in self.repo.claim_support(claim_id)
            ]
            self.repo.update_claim(claim_id, confidence=claim_confidence(signals, claim.type))
