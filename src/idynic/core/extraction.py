from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date

from pydantic import BaseModel, Field

from idynic.types import EvidenceItem, ExtractedJob, ResumeContact

logger = logging.getLogger(__name__)

_YEAR = re.compile(r"\b(19|20)\d{2}\b")
_CURRENT_MARKERS = {"present", "current", "now", "ongoing"}


class ResumeExtraction(BaseModel):
    evidence: list[EvidenceItem]
    work_history: list[ExtractedJob] = Field(default_factory=list)
    contact: ResumeContact = Field(default_factory=ResumeContact)


def extract_resume(llm, text: str) -> ResumeExtraction:
    """Run the three resume extractions concurrently.

    Evidence extraction is mandatory and its exception propagates. Work history
    and contact extraction degrade to empty results.
    """
    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="resume-extract") as pool:
        evidence_future = pool.submit(llm.extract_evidence, text=text, source_type="resume")
        history_future = pool.submit(llm.extract_work_history, text=text)
        contact_future = pool.submit(llm.extract_resume_contact, text=text)

        try:
            work_history = history_future.result()
        except Exception as exc:
            logger.warning("Work history extraction failed: %s", exc)
            work_history = []

        try:
            contact = contact_future.result()
        except Exception as exc:
            logger.warning("Contact extraction failed: %s", exc)
            contact = ResumeContact()

        evidence = evidence_future.result()

    return ResumeExtraction(evidence=evidence, work_history=sort_work_history(work_history), contact=contact)


def evidence_date(item: EvidenceItem) -> date | None:
    """Mid-year of the last year mentioned in the item's dates, else its explicit year."""
    if item.context is None:
        return None

    for source in (item.context.dates, item.context.year):
        if not source:
            continue
        years = [match.group(0) for match in _YEAR.finditer(source)]
        if years:
            return date(int(years[-1]), 6, 1)
    return None


def is_current_role(job: ExtractedJob) -> bool:
    return job.end_date is None or job.end_date.strip().lower() in _CURRENT_MARKERS


def start_year(job: ExtractedJob) -> int:
    match = _YEAR.search(job.start_date or "")
    return int(match.group(0)) if match else 0


def sort_work_history(jobs: list[ExtractedJob]) -> list[ExtractedJob]:
    return sorted(jobs, key=lambda job: (not is_current_role(job), -start_year(job)))


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def story_highlights(items: list[EvidenceItem], limit: int = 5) -> list[str]:
    return [truncate(item.text, 60) for item in items[:limit]]


def match_work_history(
    evidence: list[tuple[int, dict]],
    work_history: list[tuple[int, str, str]],
) -> dict[int, int]:
    """Map evidence ids to work history ids by company or role substring.

    ``evidence`` is ``(evidence_id, context)`` and ``work_history`` is
    ``(work_history_id, company, title)``.
    """
    links: dict[int, int] = {}
    for evidence_id, context in evidence:
        company = (context.get("company") or "").strip().lower()
        role = (context.get("role") or "").strip().lower()
        if not company and not role:
            continue

        for work_history_id, wh_company, wh_title in work_history:
            wh_company = wh_company.lower()
            wh_title = wh_title.lower()
            company_hit = bool(company and wh_company) and (company in wh_company or wh_company in company)
            role_hit = bool(role and wh_title) and (role in wh_title or wh_title in role)
            if company_hit or role_hit:
                links[evidence_id] = work_history_id
                break
    return links
