from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from idynic.config import Settings, get_settings
from idynic.llm.embeddings import HashedEmbedder
from idynic.llm.prompts import (
    CLAIM_GROUNDING_PROMPT,
    COMPANY_RESEARCH_PROMPT,
    EVIDENCE_SYSTEM_PROMPT,
    NARRATIVE_PROMPT,
    POSTING_PROMPT,
    REFLECTION_PROMPT,
    RESUME_CONTACT_PROMPT,
    RESUME_EVIDENCE_PROMPT,
    RESUME_PROMPT,
    STORY_EVIDENCE_PROMPT,
    SYNTHESIS_PROMPT,
    SYNTHESIS_SYSTEM_PROMPT,
    TAILORING_EVAL_PROMPT,
    TALKING_POINTS_PROMPT,
    WORK_HISTORY_PROMPT,
)
from idynic.llm.providers import LLMProvider, ProviderPool, parse_json
from idynic.types import (
    ClaimGroundingIssue,
    CompanyResearch,
    EvidenceItem,
    ExtractedJob,
    IdentityReflection,
    ModelResponse,
    PostingExtraction,
    ResumeContact,
    ResumeData,
    SynthesisDecision,
    TailoringEvaluation,
    TalkingPoints,
)

logger = logging.getLogger(__name__)

# USD per million tokens (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "gpt-4.1-mini": (0.40, 1.60),
}


class LLMUnavailableError(RuntimeError):
    """No provider produced a usable answer for a mandatory call."""


class LLMRouter:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.pool = ProviderPool(self.settings)
        self._fallback_embedder = HashedEmbedder()

    # extraction

    def extract_evidence(self, *, text: str, source_type: str) -> list[EvidenceItem]:
        template = STORY_EVIDENCE_PROMPT if source_type == "story" else RESUME_EVIDENCE_PROMPT
        data = self._require_json(
            task="extract",
            prompt=template.format(text=text[:30000]),
            model=self.settings.model_extract_evidence,
            system=EVIDENCE_SYSTEM_PROMPT,
            operation="extract_evidence",
        )
        raw_items = data.get("evidence", data.get("items", []))
        if not isinstance(raw_items, list):
            raise LLMUnavailableError("extract_evidence returned no evidence list")

        items: list[EvidenceItem] = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                continue
            try:
                items.append(EvidenceItem.model_validate({**raw, "source_type": source_type}))
            except ValidationError:
                logger.debug("Dropping malformed evidence item %s", raw)
        return items

    def extract_work_history(self, *, text: str) -> list[ExtractedJob]:
        data = self._require_json(
            task="extract",
            prompt=WORK_HISTORY_PROMPT.format(text=text[:30000]),
            model=self.settings.model_extract_work_history,
            operation="extract_work_history",
        )
        jobs: list[ExtractedJob] = []
        for raw in data.get("jobs", data.get("items", [])):
            try:
                jobs.append(ExtractedJob.model_validate(raw))
            except ValidationError:
                logger.debug("Dropping malformed work history entry %s", raw)
        return jobs

    def extract_resume_contact(self, *, text: str) -> ResumeContact:
        data = self._require_json(
            task="extract",
            prompt=RESUME_CONTACT_PROMPT.format(text=text[:4000]),
            model=self.settings.model_extract_resume,
            operation="extract_resume_contact",
        )
        return ResumeContact.model_validate(data.get("contact", data))

    def extract_posting(self, *, text: str) -> tuple[PostingExtraction, str | None]:
        """Returns the extraction and an optional warning; never raises."""
        if not self._providers_for("extract"):
            return heuristic_posting_extraction(text), None

        data = self._call_json(
            task="extract",
            prompt=POSTING_PROMPT.format(text=text[:20000]),
            model=self.settings.model_extract_opportunity,
        )
        if not data:
            return PostingExtraction(), "Couldn't fully parse the job posting; requirements may be incomplete"

        try:
            return PostingExtraction.model_validate(data), None
        except ValidationError:
            logger.warning("Invalid structured posting output; using empty requirements")
            return PostingExtraction(), "Couldn't fully parse the job posting; requirements may be incomplete"

    # embeddings

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        providers = self._providers_for("embed")
        if not providers:
            logger.info("No embedding provider configured; using hashed embeddings")
            return self._fallback_embedder.embed(texts)

        last_error: Exception | None = None
        for provider in providers:
            try:
                vectors = provider.embed(
                    model=self.settings.embedding_model,
                    texts=texts,
                    dimensions=self.settings.embedding_dimensions,
                )
            except Exception as exc:
                logger.warning("Embedding call failed provider=%s error=%s", provider.config.name, exc)
                last_error = exc
                continue
            if len(vectors) != len(texts):
                last_error = LLMUnavailableError("embedding count mismatch")
                continue
            return vectors
        raise LLMUnavailableError(f"embedding failed: {last_error}")

    # synthesis and identity

    def synthesize_claims(
        self,
        *,
        evidence: list[dict[str, Any]],
        claims: list[dict[str, Any]],
    ) -> list[SynthesisDecision]:
        claims_text = (
            "\n".join(
                f"{index}. \"{claim['label']}\" ({claim['type']}) - {claim.get('description') or 'No description'}"
                for index, claim in enumerate(claims, start=1)
            )
            or "No existing claims yet."
        )
        evidence_text = "\n".join(
            f"{index}. [ID: {item['id']}] \"{item['text']}\" (type: {item['type']} -> {item['claim_type']})"
            for index, item in enumerate(evidence, start=1)
        )
        data = self._call_json(
            task="synthesis",
            prompt=SYNTHESIS_PROMPT.format(claims=claims_text, evidence=evidence_text, count=len(evidence)),
            model=self.settings.model_synthesize_claims,
            system=SYNTHESIS_SYSTEM_PROMPT,
        )

        decisions: list[SynthesisDecision] = []
        for raw in data.get("decisions", data.get("items", [])):
            try:
                decisions.append(SynthesisDecision.model_validate(raw))
            except ValidationError:
                logger.debug("Dropping malformed synthesis decision %s", raw)
        return decisions

    def reflect_identity(
        self,
        *,
        claims: list[dict[str, Any]],
        fields: list[str],
        archetypes: tuple[str, ...],
    ) -> IdentityReflection:
        claims_text = "\n".join(
            f"- {claim['label']} ({claim['type']}, confidence {claim['confidence']:.2f}): {claim.get('description') or ''}"
            for claim in claims
        )
        data = self._require_json(
            task="writer",
            prompt=REFLECTION_PROMPT.format(
                fields=", ".join(fields),
                archetypes=", ".join(archetypes),
                claims=claims_text,
            ),
            model=self.settings.model_reflect_identity,
            operation="reflect_identity",
        )
        return IdentityReflection.model_validate(data)

    def ground_claims(self, *, claims: list[dict[str, Any]]) -> list[ClaimGroundingIssue]:
        data = self._require_json(
            task="eval",
            prompt=CLAIM_GROUNDING_PROMPT.format(claims=json.dumps(claims, ensure_ascii=True, default=str)),
            model=self.settings.model_evaluate,
            operation="ground_claims",
        )
        issues: list[ClaimGroundingIssue] = []
        for raw in data.get("results", []):
            if not isinstance(raw, dict) or raw.get("grounded", True):
                continue
            severity = raw.get("severity") if raw.get("severity") in {"info", "warning", "error"} else "warning"
            issues.append(
                ClaimGroundingIssue(
                    claim_id=int(raw["claim_id"]),
                    issue_type="not_grounded" if severity == "error" else "weak_grounding",
                    severity=severity,
                    message=str(raw.get("message", "")),
                )
            )
        return issues

    # tailoring

    def generate_talking_points(
        self,
        *,
        title: str,
        company: str,
        requirements: list[dict[str, Any]],
        claims: list[dict[str, Any]],
    ) -> TalkingPoints | None:
        data = self._call_json(
            task="writer",
            prompt=TALKING_POINTS_PROMPT.format(
                title=title,
                company=company,
                requirements=json.dumps(requirements, ensure_ascii=True),
                claims=json.dumps(claims, ensure_ascii=True, default=str),
            ),
            model=self.settings.model_talking_points,
        )
        if not data:
            return None
        try:
            return TalkingPoints.model_validate(data)
        except ValidationError:
            logger.warning("Invalid talking points payload; falling back to heuristic")
            return None

    def generate_narrative(self, *, title: str, company: str, talking_points: TalkingPoints) -> str | None:
        response = self._call(
            task="writer",
            prompt=NARRATIVE_PROMPT.format(
                title=title,
                company=company,
                talking_points=talking_points.model_dump_json(indent=2),
            ),
            model=self.settings.model_narrative,
        )
        if response is None:
            return None
        return response.content.strip() or None

    def generate_resume(
        self,
        *,
        title: str,
        company: str,
        requirements: list[dict[str, Any]],
        work_history: list[dict[str, Any]],
        claims: list[dict[str, Any]],
        talking_points: TalkingPoints,
    ) -> ResumeData | None:
        data = self._call_json(
            task="writer",
            prompt=RESUME_PROMPT.format(
                title=title,
                company=company,
                requirements=json.dumps(requirements, ensure_ascii=True),
                work_history=json.dumps(work_history, ensure_ascii=True, default=str),
                claims=json.dumps(claims, ensure_ascii=True, default=str),
                talking_points=talking_points.model_dump_json(),
            ),
            model=self.settings.model_resume,
        )
        if not data:
            return None
        try:
            return ResumeData.model_validate(data)
        except ValidationError:
            logger.warning("Invalid resume payload; falling back to heuristic")
            return None

    def evaluate_tailoring(
        self,
        *,
        narrative: str,
        resume: ResumeData,
        claims: list[dict[str, Any]],
        requirements: list[dict[str, Any]],
    ) -> TailoringEvaluation:
        model = self.settings.model_evaluate
        response = self._call(
            task="eval",
            prompt=TAILORING_EVAL_PROMPT.format(
                claims=json.dumps(claims, ensure_ascii=True, default=str),
                requirements=json.dumps(requirements, ensure_ascii=True),
                narrative=narrative,
                resume=resume.model_dump_json(),
            ),
            model=model,
        )
        data = parse_json(response.content) if response is not None else {}
        if not data or "grounding" not in data:
            return TailoringEvaluation(passed=False, hallucinations=["Evaluation failed"], eval_model=model)

        grounding = data.get("grounding") or {}
        hallucinations = [
            f"{item.get('text', '')}: {item.get('issue', '')}".strip(": ")
            for item in grounding.get("hallucinations", [])
            if isinstance(item, dict)
        ]
        missed = [
            f"{item.get('requirement', '')} -> {item.get('matching_claim', '')}"
            for item in (data.get("utilization") or {}).get("missed", [])
            if isinstance(item, dict)
        ]
        gaps = [
            f"{item.get('requirement', '')}: {item.get('note', '')}".strip(": ")
            for item in data.get("gaps", [])
            if isinstance(item, dict)
        ]
        grounding_passed = bool(grounding.get("passed", not hallucinations)) and not hallucinations
        return TailoringEvaluation(
            passed=grounding_passed,
            grounding_passed=grounding_passed,
            hallucinations=hallucinations,
            missed_opportunities=missed,
            gaps=gaps,
            eval_model=model,
            eval_cost_cents=estimate_cost_cents(model, response.raw if response else {}),
        )

    def research_company(self, *, company: str, title: str, description: str) -> CompanyResearch:
        data = self._require_json(
            task="writer",
            prompt=COMPANY_RESEARCH_PROMPT.format(company=company, title=title, description=description[:4000]),
            model=self.settings.model_research_company,
            operation="research_company",
        )
        return CompanyResearch.model_validate(data)

    # plumbing

    def _providers_for(self, task: str) -> list[LLMProvider]:
        provider_name = {
            "extract": self.settings.llm_router_extract_provider,
            "synthesis": self.settings.llm_router_synthesis_provider,
            "writer": self.settings.llm_router_writer_provider,
            "eval": self.settings.llm_router_eval_provider,
        }.get(task, self.settings.llm_router_default)

        order = ("local", "openai") if provider_name == "local" else ("openai", "local")

        # Clients are only built for configured providers; OpenAI() rejects an empty key.
        available: list[LLMProvider] = []
        for name in order:
            if name == "openai" and self.settings.openai_api_key:
                available.append(self.pool.openai())
            elif name == "local" and self.settings.local_llm_enabled:
                available.append(self.pool.local())
        return available

    def _call(self, *, task: str, prompt: str, model: str, system: str = "") -> ModelResponse | None:
        for provider in self._providers_for(task):
            try:
                return provider.complete_text(model=self._model_for(provider, model), prompt=prompt, system=system)
            except Exception as exc:
                logger.warning("LLM call failed provider=%s error=%s", provider.config.name, exc)
        return None

    def _call_json(self, *, task: str, prompt: str, model: str, system: str = "") -> dict[str, Any]:
        for provider in self._providers_for(task):
            try:
                return provider.complete_json(model=self._model_for(provider, model), prompt=prompt, system=system)
            except Exception as exc:
                logger.warning("LLM JSON call failed provider=%s error=%s", provider.config.name, exc)
        return {}

    def _require_json(self, *, task: str, prompt: str, model: str, operation: str, system: str = "") -> dict[str, Any]:
        data = self._call_json(task=task, prompt=prompt, model=model, system=system)
        if not data:
            raise LLMUnavailableError(f"{operation} produced no usable output")
        return data

    def _model_for(self, provider: LLMProvider, model: str) -> str:
        if provider.config.name == "local":
            return self.settings.local_llm_model
        return model


def estimate_cost_cents(model: str, raw: dict[str, Any]) -> float:
    usage = raw.get("usage") or {}
    input_price, output_price = MODEL_PRICING.get(model, (0.0, 0.0))
    prompt_tokens = usage.get("prompt_tokens", 0) or 0
    completion_tokens = usage.get("completion_tokens", 0) or 0
    dollars = (prompt_tokens * input_price + completion_tokens * output_price) / 1_000_000
    return round(dollars * 100, 4)


def heuristic_posting_extraction(text: str) -> PostingExtraction:
    lines = [line.strip(" -*\t") for line in text.splitlines() if line.strip(" -*\t")]
    title = lines[0] if lines else "Unknown Position"

    must_have = [line for line in lines if "require" in line.lower() or "must" in line.lower()][:8]
    nice_to_have = [line for line in lines if "nice to have" in line.lower() or "bonus" in line.lower()][:5]
    responsibilities = [line for line in lines if "responsib" in line.lower()][:8]
    if not responsibilities:
        responsibilities = lines[1:5]

    return PostingExtraction.model_validate(
        {
            "title": title[:255],
            "requirements": {
                "mustHave": [{"text": item, "type": classify_requirement(item)} for item in must_have],
                "niceToHave": [{"text": item, "type": classify_requirement(item)} for item in nice_to_have],
            },
            "responsibilities": responsibilities,
        }
    )


def classify_requirement(text: str) -> str:
    lowered = text.lower()
    if any(token in lowered for token in ("degree", "bachelor", "master", "phd", "b.s.", "m.s.")):
        return "education"
    if any(token in lowered for token in ("certif", "license", "licence")):
        return "certification"
    if any(token in lowered for token in ("years", "experience")):
        return "experience"
    return "skill"
