from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from idynic.core.extraction import evidence_date, story_highlights
from idynic.jobs.dedup import DedupGuard, duplicate_story_message
from idynic.jobs.executor import StepContext
from idynic.jobs.phases import STORY_JOB
from idynic.pipelines.base import IngestionPipeline
from idynic.types import EvidenceItem, Highlight, StoryTrigger


class StoryPipeline(IngestionPipeline):
    kind = STORY_JOB
    document_type = "story"

    def run(self, ctx: StepContext, event: StoryTrigger) -> None:
        duplicate: str | None = ctx.step("check-duplicate", lambda: self._check_duplicate(ctx, event))
        if duplicate:
            ctx.jobs.mark_duplicate(duplicate)
            return

        evidence: list[EvidenceItem] = ctx.step(
            "extract",
            lambda: self._extract(ctx, event),
            model=list[EvidenceItem],
        )
        document_id: int = ctx.step(
            "create-document",
            lambda: ctx.repo.create_document(
                user_id=event.user_id,
                job_id=ctx.job_id,
                type=self.document_type,
                content_hash=event.content_hash,
                raw_text=event.text,
                filename=f"Story - {datetime.now(UTC).date().isoformat()}",
            ).id,
        )

        if not evidence:
            ctx.step(
                "complete",
                lambda: self.finish(ctx, document_id=document_id, summary=self._summary(document_id, 0, {}, 0)),
            )
            return

        texts = [item.text for item in evidence]
        vectors: list[list[float]] = ctx.step("embeddings", lambda: self.embed_evidence(ctx, texts))
        evidence_ids: list[int] = ctx.step(
            "store-evidence",
            lambda: [
                row.id
                for row in ctx.repo.store_evidence(
                    user_id=event.user_id,
                    document_id=document_id,
                    items=evidence,
                    embeddings=vectors,
                    evidence_dates=[evidence_date(item) for item in evidence],
                )
            ],
        )

        synthesis = ctx.step(
            "synthesize",
            lambda: self.synthesize(ctx, user_id=event.user_id, evidence_ids=evidence_ids),
        )
        ctx.step("reflect", lambda: self.reflect(ctx, user_id=event.user_id))
        issues_found: int = ctx.step(
            "evaluate",
            lambda: self.evaluate(ctx, user_id=event.user_id, touched=synthesis["touched"]),
        )

        summary = self._summary(document_id, len(evidence_ids), synthesis, issues_found)
        ctx.step("complete", lambda: self.finish(ctx, document_id=document_id, summary=summary))

    def _check_duplicate(self, ctx: StepContext, event: StoryTrigger) -> str | None:
        ctx.jobs.set_phase("validating")
        hit = DedupGuard(ctx.session).check_document(
            user_id=event.user_id,
            content_hash=event.content_hash,
            document_type=self.document_type,
            exclude_job_id=ctx.job_id,
        )
        return duplicate_story_message(hit) if hit else None

    def _extract(self, ctx: StepContext, event: StoryTrigger) -> list[EvidenceItem]:
        ctx.jobs.set_phase("extracting")
        evidence = self.llm.extract_evidence(text=event.text, source_type="story")
        ctx.jobs.add_highlights(Highlight(text=text) for text in story_highlights(evidence))
        ctx.log.info("extracted evidence=%s", len(evidence))
        return evidence

    @staticmethod
    def _summary(document_id: int, evidence_count: int, synthesis: dict[str, Any], issues_found: int) -> dict[str, Any]:
        return {
            "documentId": document_id,
            "evidenceCount": evidence_count,
            "claimsCreated": synthesis.get("claims_created", 0),
            "claimsUpdated": synthesis.get("claims_updated", 0),
            "issuesFound": issues_found,
        }
