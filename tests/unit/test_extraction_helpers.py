from __future__ import annotations

from datetime import date

import pytest

from idynic.core.extraction import (
    evidence_date,
    extract_resume,
    match_work_history,
    sort_work_history,
    story_highlights,
    truncate,
)
from idynic.core.highlights import is_notable_company, resume_highlights, tenure
from idynic.types import EvidenceItem, ExtractedJob, ResumeContact


def _item(text: str, type: str = "accomplishment", **context: str) -> EvidenceItem:
    return EvidenceItem.model_validate({"text": text, "type": type, "context": context or None})


def test_evidence_date_uses_last_year_mentioned() -> None:
    assert evidence_date(_item("Shipped search", dates="2019 - 2023")) == date(2023, 6, 1)
    assert evidence_date(_item("BSc Physics", type="education", year="2015")) == date(2015, 6, 1)
    assert evidence_date(_item("Shipped search", dates="Present")) is None
    assert evidence_date(_item("Python", type="skill_listed")) is None


def test_work_history_sorted_current_roles_first() -> None:
    jobs = [
        ExtractedJob(company="Old Co", title="Engineer", start_date="2015", end_date="2018"),
        ExtractedJob(company="Side Project", title="Founder", start_date="2019", end_date="Present"),
        ExtractedJob(company="Now Co", title="Staff Engineer", start_date="2020", end_date=None),
    ]

    ordered = [job.company for job in sort_work_history(jobs)]

    assert ordered == ["Now Co", "Side Project", "Old Co"]


def test_evidence_links_to_work_history_by_company_or_role() -> None:
    evidence = [
        (1, {"company": "Acme Corp"}),
        (2, {"role": "Staff Engineer"}),
        (3, {}),
    ]
    history = [(10, "Acme", "Developer"), (11, "Globex", "Staff Engineer")]

    assert match_work_history(evidence, history) == {1: 10, 2: 11}


def test_truncate_and_story_highlights() -> None:
    assert truncate("abcdefghij", 8) == "abcde..."
    assert truncate("short", 8) == "short"

    items = [_item(f"Story item {index} " + "x" * 80) for index in range(7)]
    highlights = story_highlights(items)
    assert len(highlights) == 5
    assert all(len(text) == 60 for text in highlights)


def test_resume_highlights_order_and_cap() -> None:
    evidence = [
        _item("AWS Certified Solutions Architect", type="certification"),
        _item("BSc Computer Science, MIT", type="education"),
        _item("Cut infrastructure costs by 30%"),
        _item("Mentored the platform team"),
        _item("Grew weekly actives from 2k to 40k"),
        _item("Reduced p99 latency by 120ms"),
        _item("Shipped 3 major releases"),
    ]
    history = [ExtractedJob(company="Google", title="SWE", start_date="2018", end_date="2022")]

    highlights = resume_highlights(evidence, history, current_year=2026)

    assert highlights == [
        "4 years at Google",
        "AWS Certified Solutions Architect",
        "BSc Computer Science, MIT",
        "Cut infrastructure costs by 30%",
        "Grew weekly actives from 2k to 40k",
        "Reduced p99 latency by 120ms",
    ]


def test_tenure_and_notable_companies() -> None:
    assert tenure(ExtractedJob(company="X", title="t", start_date="2025"), current_year=2026) == "1 year"
    assert tenure(ExtractedJob(company="X", title="t", start_date="2026"), current_year=2026) is None
    assert tenure(ExtractedJob(company="X", title="t", start_date=""), current_year=2026) is None
    assert is_notable_company("Google")
    assert is_notable_company("Door Dash")
    assert not is_notable_company("Initech")


class _ResumeLLM:
    def extract_evidence(self, *, text: str, source_type: str) -> list[EvidenceItem]:
        return [_item("Python", type="skill_listed")]

    def extract_work_history(self, *, text: str) -> list[ExtractedJob]:
        raise RuntimeError("work history model down")

    def extract_resume_contact(self, *, text: str) -> ResumeContact:
        return ResumeContact(email="ada@example.com")


def test_resume_extraction_degrades_secondary_outputs() -> None:
    result = extract_resume(_ResumeLLM(), "resume text")

    assert [item.text for item in result.evidence] == ["Python"]
    assert result.work_history == []
    assert result.contact.email == "ada@example.com"


def test_resume_extraction_requires_evidence() -> None:
    class _NoEvidence(_ResumeLLM):
        def extract_evidence(self, *, text: str, source_type: str) -> list[EvidenceItem]:
            raise RuntimeError("evidence model down")

    with pytest.raises(RuntimeError):
        extract_resume(_NoEvidence(), "resume text")
