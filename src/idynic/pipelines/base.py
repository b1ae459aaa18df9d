from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel

from idynic.config import Settings, get_settings
from idynic.core.evaluation import evaluate_claims
from idynic.core.reflection import reflect_identity
from idynic.core.synthesis import ClaimSynthesizer
from idynic.jobs.errors import StageFailed, user_message
from idynic.jobs.executor import StepContext
from idynic.jobs.phases import JobKind
from idynic.llm.router import LLMRouter

logger = logging.getLogger(__name__)

SYNTHESIS_WARNING = "Claim synthesis partially failed"
REFLECTION_WARNING = "Couldn't generate identity snapshot"
EMBEDDING_FAILED_MESSAGE = "Failed to generate embeddings"


class Pipeline(ABC):
    """A fixed sequence of checkpointed steps for one job type.

    Phase changes and highlight writes happen inside the step that owns them, so
    a retried attempt replays completed steps without touching the job row again.
    """

    kind: ClassVar[JobKind]
    attempts_setting: ClassVar[str] = "ingestion_max_attempts"

    def __init__(self, llm: Any = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.llm = llm or LLMRouter(self.settings)

    @property
    def max_attempts(self) -> int:
        return int(getattr(self.settings, self.attempts_setting))

    @abstractmethod
    def run(self, ctx: StepContext, event: Any) -> None:
        raise NotImplementedError

    def on_failure(self, ctx: StepContext, event: BaseModel, error: BaseException) -> None:
        ctx.jobs.set_error(user_message(error))


class IngestionPipeline(Pipeline):
    """Shared tail of the resume and story pipelines: synthesis, reflection, claim evaluation."""

    document_type: ClassVar[str]

    def on_failure(self, ctx: StepContext, event: BaseModel, error: BaseException) -> None:
        document = ctx.repo.get_document_for_job(ctx.job_id)
        if document is not None:
            ctx.repo.set_document_status(document.id, "failed")
        super().on_failure(ctx, event, error)

    def embed_evidence(self, ctx: StepContext, texts: list[str]) -> list[list[float]]:
        ctx.jobs.set_phase("embeddings")
        vectors = self.llm.embed(texts)
        if len(vectors) != len(texts):
            raise StageFailed(EMBEDDING_FAILED_MESSAGE)
        return vectors

    def synthesize(self, ctx: StepContext, *, user_id: int, evidence_ids: list[int]) -> dict[str, Any]:
        total = len(evidence_ids)
        ctx.jobs.set_phase("synthesis", progress=f"0/{total}")
        counts = {"created": 0, "updated": 0}

        def on_progress(current: int, total: int) -> None:
            ctx.jobs.update_progress(f"{current}/{total}")

        def on_claim_update(label: str, action: str) -> None:
            counts[action] += 1
            ctx.jobs.add_highlight(label, kind=action)

        synthesizer = ClaimSynthesizer(ctx.repo, self.llm, self.settings)
        try:
            result = synthesizer.run(
                user_id=user_id,
                evidence=ctx.repo.list_evidence(evidence_ids),
                on_progress=on_progress,
                on_claim_update=on_claim_update,
            )
            touched = result.touched_claim_ids
        except Exception as exc:
            ctx.session.rollback()
            ctx.log.warning("synthesis failed: %s", exc, exc_info=True)
            ctx.jobs.set_warning(SYNTHESIS_WARNING)
            touched = ctx.repo.claims_for_evidence(evidence_ids)

        return {"claims_created": counts["created"], "claims_updated": counts["updated"], "touched": touched}

    def reflect(self, ctx: StepContext, *, user_id: int) -> str | None:
        ctx.jobs.set_phase("reflection")
        try:
            reflection = reflect_identity(
                ctx.repo,
                self.llm,
                user_id=user_id,
                claim_limit=self.settings.reflection_claim_limit,
            )
        except Exception as exc:
            ctx.session.rollback()
            ctx.log.warning("reflection failed: %s", exc, exc_info=True)
            ctx.jobs.set_warning(REFLECTION_WARNING)
            return None

        archetype = reflection.archetype if reflection else None
        if archetype:
            ctx.jobs.add_highlight(f"Archetype: {archetype}")
        return archetype

    def evaluate(self, ctx: StepContext, *, user_id: int, touched: list[int]) -> int:
        ctx.jobs.set_phase("evaluation")
        try:
            result = evaluate_claims(
                ctx.repo,
                self.llm,
                user_id=user_id,
                touched_claim_ids=touched,
                sample_size=self.settings.claim_eval_sample_size,
                duplicate_threshold=self.settings.duplicate_label_threshold,
            )
        except Exception as exc:
            ctx.session.rollback()
            ctx.log.warning("claim evaluation failed: %s", exc, exc_info=True)
            return 0
        return result.issues_found

    def finish(self, ctx: StepContext, *, document_id: int, summary: dict[str, Any]) -> None:
        ctx.repo.set_document_status(document_id, "completed")
        ctx.jobs.complete(summary, document_id=document_id)
        ctx.log.info("completed %s", summary)
