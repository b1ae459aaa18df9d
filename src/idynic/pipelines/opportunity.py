from __future__ import annotations

from typing import Any

from idynic.core.job_fetcher import fetch_job_text
from idynic.core.research import research_company
from idynic.jobs.dedup import DedupGuard, duplicate_opportunity_message, normalize_job_url
from idynic.jobs.errors import StageFailed, ValidationFailed
from idynic.jobs.executor import StepContext
from idynic.jobs.phases import OPPORTUNITY_JOB
from idynic.pipelines.base import EMBEDDING_FAILED_MESSAGE, Pipeline
from idynic.types import Highlight, OpportunityTrigger, PostingExtraction

FETCH_FAILED_MESSAGE = "Couldn't fetch job details from that URL. Please provide the job description."
RESEARCH_WARNING = "Couldn't research the company; the posting was saved without it"


def posting_embedding_text(extraction: PostingExtraction) -> str:
    must_have = ". ".join(item.text for item in extraction.requirements.must_have[:5])
    return f"{extraction.title} at {extraction.company or 'Unknown'}. {must_have}".strip()


class OpportunityPipeline(Pipeline):
    kind = OPPORTUNITY_JOB

    def run(self, ctx: StepContext, event: OpportunityTrigger) -> None:
        dedup = ctx.step("check-duplicate", lambda: self._check_duplicate(ctx, event))
        if dedup["duplicate"]:
            ctx.jobs.mark_duplicate(dedup["duplicate"])
            return

        posting = ctx.step("enrich", lambda: self._enrich(ctx, event))
        extraction: PostingExtraction = ctx.step(
            "extract",
            lambda: self._extract(ctx, posting["text"]),
            model=PostingExtraction,
        )
        vector: list[float] = ctx.step("embed", lambda: self._embed(ctx, extraction))

        opportunity_id: int = ctx.step(
            "store-opportunity",
            lambda: ctx.repo.create_opportunity(
                user_id=event.user_id,
                job_id=ctx.job_id,
                extraction=extraction,
                description=posting["text"],
                url=event.url,
                normalized_url=dedup["normalized_url"],
                embedding=vector,
                source=posting["source"],
            ).id,
        )
        ctx.step("research", lambda: self._research(ctx, opportunity_id))

        summary = {
            "opportunityId": opportunity_id,
            "title": extraction.title,
            "company": extraction.company,
            "source": posting["source"],
            "requirementsCount": extraction.requirement_count,
        }
        ctx.step("complete", lambda: self._complete(ctx, opportunity_id, summary))

    def _complete(self, ctx: StepContext, opportunity_id: int, summary: dict[str, Any]) -> None:
        ctx.jobs.complete(summary, opportunity_id=opportunity_id)
        ctx.log.info("completed %s", summary)

    def _check_duplicate(self, ctx: StepContext, event: OpportunityTrigger) -> dict[str, Any]:
        ctx.jobs.set_phase("validating")
        if not event.url:
            return {"normalized_url": None, "duplicate": None}

        normalized = normalize_job_url(event.url)
        hit = DedupGuard(ctx.session).check_opportunity(
            user_id=event.user_id,
            normalized_url=normalized,
            exclude_job_id=ctx.job_id,
        )
        return {"normalized_url": normalized, "duplicate": duplicate_opportunity_message(hit) if hit else None}

    def _enrich(self, ctx: StepContext, event: OpportunityTrigger) -> dict[str, str]:
        ctx.jobs.set_phase("enriching")
        description = (event.description or "").strip()
        if description:
            return {"text": description, "source": "manual"}

        if event.url:
            scraped = fetch_job_text(event.url, timeout_sec=self.settings.job_fetch_timeout_sec).strip()
            if scraped:
                return {"text": scraped, "source": "url"}
        raise ValidationFailed(FETCH_FAILED_MESSAGE)

    def _extract(self, ctx: StepContext, text: str) -> PostingExtraction:
        ctx.jobs.set_phase("extracting")
        extraction, warning = self.llm.extract_posting(text=text)
        if warning:
            ctx.jobs.set_warning(warning)

        found = [extraction.title]
        if extraction.company:
            found.append(extraction.company)
        found.append(f"{extraction.requirement_count} requirements")
        ctx.jobs.add_highlights(Highlight(text=item) for item in found)
        return extraction

    def _embed(self, ctx: StepContext, extraction: PostingExtraction) -> list[float]:
        ctx.jobs.set_phase("embeddings")
        vectors = self.llm.embed([posting_embedding_text(extraction)])
        if len(vectors) != 1:
            raise StageFailed(EMBEDDING_FAILED_MESSAGE)
        return vectors[0]

    def _research(self, ctx: StepContext, opportunity_id: int) -> bool:
        ctx.jobs.set_phase("researching")
        opportunity = ctx.repo.get_opportunity(opportunity_id)
        try:
            research = research_company(self.llm, opportunity)
        except Exception as exc:
            ctx.log.warning("company research failed: %s", exc)
            ctx.jobs.set_warning(RESEARCH_WARNING)
            return False
        if research is None:
            return False
        ctx.repo.save_company_research(opportunity_id, research.model_dump())
        return True
