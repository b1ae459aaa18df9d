from __future__ import annotations

from typing import Any

from idynic.core.evaluation import evaluate_tailoring
from idynic.core.tailoring import (
    claims_with_evidence,
    generate_narrative,
    generate_resume,
    generate_talking_points,
    opportunity_requirements,
    work_history_payload,
)
from idynic.jobs.errors import ValidationFailed
from idynic.jobs.executor import StepContext
from idynic.jobs.phases import TAILOR_JOB
from idynic.pipelines.base import Pipeline
from idynic.types import Highlight, ResumeData, TailorTrigger, TalkingPoints

OPPORTUNITY_NOT_FOUND = "Opportunity not found"


class TailorPipeline(Pipeline):
    kind = TAILOR_JOB
    attempts_setting = "tailor_max_attempts"

    def run(self, ctx: StepContext, event: TailorTrigger) -> None:
        opportunity = ctx.step("load-opportunity", lambda: self._load_opportunity(ctx, event))
        if event.regenerate:
            ctx.step(
                "clear-existing",
                lambda: ctx.repo.delete_tailored_profile(user_id=event.user_id, opportunity_id=event.opportunity_id),
            )

        title, company = opportunity["title"], opportunity["company"] or "the company"
        talking_points: TalkingPoints = ctx.step(
            "talking-points",
            lambda: self._talking_points(ctx, event, title, company),
            model=TalkingPoints,
        )
        narrative: str = ctx.step(
            "narrative",
            lambda: self._narrative(ctx, title, company, talking_points),
        )
        resume: ResumeData = ctx.step(
            "resume",
            lambda: self._resume(ctx, event, title, company, talking_points),
            model=ResumeData,
        )
        profile_id: int = ctx.step(
            "store-profile",
            lambda: ctx.repo.upsert_tailored_profile(
                user_id=event.user_id,
                opportunity_id=event.opportunity_id,
                talking_points=talking_points.model_dump(mode="json"),
                narrative=narrative,
                resume_data=resume.model_dump(mode="json"),
            ).id,
        )
        ctx.step("evaluate", lambda: self._evaluate(ctx, event, profile_id, narrative, resume))
        ctx.step(
            "increment-usage",
            lambda: ctx.repo.increment_usage(event.user_id, "tailored_profiles_count").tailored_profiles_count,
        )

        summary = {
            "profileId": profile_id,
            "opportunityId": event.opportunity_id,
            "title": opportunity["title"],
            "company": opportunity["company"],
        }
        ctx.step("complete", lambda: self._complete(ctx, profile_id, summary))

    def _load_opportunity(self, ctx: StepContext, event: TailorTrigger) -> dict[str, Any]:
        ctx.jobs.set_phase("analyzing")
        opportunity = ctx.repo.get_opportunity(event.opportunity_id, user_id=event.user_id)
        if opportunity is None:
            raise ValidationFailed(OPPORTUNITY_NOT_FOUND)

        found = [Highlight(text=f"Tailoring for {opportunity.title}")]
        if opportunity.company:
            found.append(Highlight(text=f"at {opportunity.company}"))
        ctx.jobs.add_highlights(found, once=True)
        return {"title": opportunity.title, "company": opportunity.company}

    def _talking_points(self, ctx: StepContext, event: TailorTrigger, title: str, company: str) -> TalkingPoints:
        ctx.jobs.add_highlight("Analyzing your experience...", once=True)
        opportunity = ctx.repo.get_opportunity(event.opportunity_id)
        talking_points = generate_talking_points(
            self.llm,
            title=title,
            company=company,
            requirements=opportunity_requirements(opportunity),
            claims=claims_with_evidence(ctx.repo, event.user_id, self.settings.reflection_claim_limit),
        )
        ctx.jobs.add_highlight(f"Found {talking_points.total} talking points", once=True)
        return talking_points

    def _narrative(self, ctx: StepContext, title: str, company: str, talking_points: TalkingPoints) -> str:
        ctx.jobs.set_phase("generating")
        ctx.jobs.add_highlight("Crafting your narrative...", once=True)
        return generate_narrative(self.llm, title=title, company=company, talking_points=talking_points)

    def _resume(
        self,
        ctx: StepContext,
        event: TailorTrigger,
        title: str,
        company: str,
        talking_points: TalkingPoints,
    ) -> ResumeData:
        ctx.jobs.add_highlight("Building tailored resume...", once=True)
        opportunity = ctx.repo.get_opportunity(event.opportunity_id)
        return generate_resume(
            self.llm,
            title=title,
            company=company,
            requirements=opportunity_requirements(opportunity),
            work_history=work_history_payload(ctx.repo.list_work_history(user_id=event.user_id)),
            claims=claims_with_evidence(ctx.repo, event.user_id, self.settings.reflection_claim_limit),
            talking_points=talking_points,
        )

    def _evaluate(
        self,
        ctx: StepContext,
        event: TailorTrigger,
        profile_id: int,
        narrative: str,
        resume: ResumeData,
    ) -> bool | None:
        ctx.jobs.set_phase("evaluating")
        ctx.jobs.add_highlight("Running quality checks...", once=True)
        try:
            opportunity = ctx.repo.get_opportunity(event.opportunity_id)
            evaluation = evaluate_tailoring(
                self.llm,
                narrative=narrative,
                resume=resume,
                claims=claims_with_evidence(ctx.repo, event.user_id, self.settings.reflection_claim_limit),
                requirements=opportunity_requirements(opportunity),
            )
            ctx.repo.add_eval_log(tailored_profile_id=profile_id, user_id=event.user_id, evaluation=evaluation)
        except Exception as exc:
            ctx.session.rollback()
            ctx.log.warning("tailoring evaluation skipped: %s", exc, exc_info=True)
            return None

        verdict = "Quality checks passed!" if evaluation.passed else "Review suggested - see details"
        ctx.jobs.add_highlight(verdict, once=True)
        return evaluation.passed

    def _complete(self, ctx: StepContext, profile_id: int, summary: dict[str, Any]) -> None:
        ctx.jobs.complete(summary, tailored_profile_id=profile_id)
        ctx.log.info("completed %s", summary)
