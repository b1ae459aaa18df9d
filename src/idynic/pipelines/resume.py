from __future__ import annotations

from typing import Any

from idynic.core.extraction import ResumeExtraction, evidence_date, extract_resume, match_work_history
from idynic.core.highlights import resume_highlights
from idynic.core.pdf import extract_pdf_text, read_upload
from idynic.jobs.dedup import DedupGuard, content_hash, duplicate_document_message
from idynic.jobs.errors import ExtractionEmpty
from idynic.jobs.executor import StepContext
from idynic.jobs.phases import RESUME_JOB
from idynic.pipelines.base import IngestionPipeline
from idynic.types import Highlight, ResumeTrigger

PDF_EMPTY_MESSAGE = "Could not extract text from PDF"
MAX_FOUND_HIGHLIGHTS = 10


class ResumePipeline(IngestionPipeline):
    kind = RESUME_JOB
    document_type = "resume"

    def run(self, ctx: StepContext, event: ResumeTrigger) -> None:
        text: str = ctx.step("parse-pdf", lambda: self._parse_pdf(ctx, event))

        dedup = ctx.step("check-duplicate", lambda: self._check_duplicate(ctx, event, text))
        if dedup["duplicate"]:
            ctx.jobs.mark_duplicate(dedup["duplicate"])
            return

        extraction: ResumeExtraction = ctx.step(
            "extract",
            lambda: self._extract(ctx, text),
            model=ResumeExtraction,
        )
        ctx.step("update-contact", lambda: ctx.repo.update_profile_contact(event.user_id, extraction.contact))

        document_id: int = ctx.step(
            "create-document",
            lambda: ctx.repo.create_document(
                user_id=event.user_id,
                job_id=ctx.job_id,
                type=self.document_type,
                content_hash=dedup["content_hash"],
                raw_text=text,
                filename=event.filename,
                storage_path=event.storage_location,
            ).id,
        )
        work_history_ids: list[int] = ctx.step(
            "store-work-history",
            lambda: [
                row.id
                for row in ctx.repo.store_work_history(
                    user_id=event.user_id,
                    document_id=document_id,
                    jobs=extraction.work_history,
                )
            ],
        )

        if not extraction.evidence:
            ctx.step(
                "complete",
                lambda: self.finish(
                    ctx,
                    document_id=document_id,
                    summary=self._summary(document_id, 0, len(work_history_ids), {}, 0),
                ),
            )
            return

        texts = [item.text for item in extraction.evidence]
        vectors: list[list[float]] = ctx.step("embeddings", lambda: self.embed_evidence(ctx, texts))
        evidence_ids: list[int] = ctx.step(
            "store-evidence",
            lambda: [
                row.id
                for row in ctx.repo.store_evidence(
                    user_id=event.user_id,
                    document_id=document_id,
                    items=extraction.evidence,
                    embeddings=vectors,
                    evidence_dates=[evidence_date(item) for item in extraction.evidence],
                )
            ],
        )
        ctx.step("link-work-history", lambda: self._link_work_history(ctx, event.user_id, document_id, evidence_ids))

        synthesis = ctx.step(
            "synthesize",
            lambda: self.synthesize(ctx, user_id=event.user_id, evidence_ids=evidence_ids),
        )
        ctx.step("reflect", lambda: self.reflect(ctx, user_id=event.user_id))
        issues_found: int = ctx.step(
            "evaluate",
            lambda: self.evaluate(ctx, user_id=event.user_id, touched=synthesis["touched"]),
        )

        summary = self._summary(document_id, len(evidence_ids), len(work_history_ids), synthesis, issues_found)
        ctx.step("complete", lambda: self.finish(ctx, document_id=document_id, summary=summary))

    def _parse_pdf(self, ctx: StepContext, event: ResumeTrigger) -> str:
        ctx.jobs.set_phase("validating")
        text = extract_pdf_text(read_upload(event.storage_location))
        if not text.strip():
            raise ExtractionEmpty(PDF_EMPTY_MESSAGE)
        return text

    def _check_duplicate(self, ctx: StepContext, event: ResumeTrigger, text: str) -> dict[str, Any]:
        ctx.jobs.set_phase("parsing")
        fingerprint = content_hash(text)
        hit = DedupGuard(ctx.session).check_document(
            user_id=event.user_id,
            content_hash=fingerprint,
            document_type=self.document_type,
            exclude_job_id=ctx.job_id,
        )
        return {"content_hash": fingerprint, "duplicate": duplicate_document_message(hit) if hit else None}

    def _extract(self, ctx: StepContext, text: str) -> ResumeExtraction:
        ctx.jobs.set_phase("extracting")
        extraction = extract_resume(self.llm, text)
        found = resume_highlights(extraction.evidence, extraction.work_history)
        ctx.jobs.add_highlights(Highlight(text=item) for item in found[:MAX_FOUND_HIGHLIGHTS])
        ctx.log.info(
            "extracted evidence=%s work_history=%s",
            len(extraction.evidence),
            len(extraction.work_history),
        )
        return extraction

    def _link_work_history(self, ctx: StepContext, user_id: int, document_id: int, evidence_ids: list[int]) -> int:
        history = [
            (row.id, row.company, row.title)
            for row in ctx.repo.list_work_history(user_id=user_id, document_id=document_id)
        ]
        if not history:
            return 0
        evidence = [(row.id, row.context_json or {}) for row in ctx.repo.list_evidence(evidence_ids)]
        return ctx.repo.link_evidence_to_work_history(match_work_history(evidence, history))

    @staticmethod
    def _summary(
        document_id: int,
        evidence_count: int,
        work_history_count: int,
        synthesis: dict[str, Any],
        issues_found: int,
    ) -> dict[str, Any]:
        return {
            "documentId": document_id,
            "evidenceCount": evidence_count,
            "workHistoryCount": work_history_count,
            "claimsCreated": synthesis.get("claims_created", 0),
            "claimsUpdated": synthesis.get("claims_updated", 0),
            "issuesFound": issues_found,
        }
