from __future__ import annotations

import pytest

from idynic.db.repositories import Repository
from idynic.db.session import SessionLocal
from idynic.jobs.phases import OPPORTUNITY_JOB
from idynic.pipelines.base import EMBEDDING_FAILED_MESSAGE
from idynic.pipelines.opportunity import FETCH_FAILED_MESSAGE, RESEARCH_WARNING

POSTING = "Platform Engineer\nGlobex\nRequirements: Python services in production\nNice to have: Kubernetes"
JOB_URL = "https://www.jobs.example.com/globex/platform-engineer/?utm_source=newsletter"


@pytest.fixture
def scraped(monkeypatch):
    state = {"text": POSTING, "urls": []}

    def fake_fetch(url: str, timeout_sec: int = 30) -> str:
        state["urls"].append(url)
        return state["text"]

    monkeypatch.setattr("idynic.pipelines.opportunity.fetch_job_text", fake_fetch)
    return state


def test_pasted_description_is_extracted_and_researched(service, profile_id: int, load_job, fake_llm) -> None:
    job = load_job(service.submit_opportunity(profile_id, description=POSTING))

    assert job.status == "completed"
    assert job.warning is None
    assert job.phase_history == list(OPPORTUNITY_JOB.phases)
    assert job.summary == {
        "opportunityId": job.opportunity_id,
        "title": "Platform Engineer",
        "company": "Globex",
        "source": "manual",
        "requirementsCount": 2,
    }
    assert [item["text"] for item in job.highlights] == ["Platform Engineer", "Globex", "2 requirements"]

    with SessionLocal() as session:
        opportunity = Repository(session).get_opportunity(job.opportunity_id)
        assert opportunity.source == "manual"
        assert opportunity.normalized_url is None
        assert opportunity.requirements_json["mustHave"][0]["text"] == "Python services in production"
        assert opportunity.company_research_json["overview"] == "Globex builds infrastructure tools."
        assert len(opportunity.embedding) == 64


def test_url_is_scraped_and_normalized(service, profile_id: int, load_job, scraped) -> None:
    job = load_job(service.submit_opportunity(profile_id, url=JOB_URL))

    assert job.status == "completed"
    assert job.summary["source"] == "url"
    assert scraped["urls"] == [JOB_URL]

    with SessionLocal() as session:
        opportunity = Repository(session).get_opportunity(job.opportunity_id)
        assert opportunity.url == JOB_URL
        assert opportunity.normalized_url == "https://jobs.example.com/globex/platform-engineer"


def test_same_url_with_tracking_is_duplicate(service, profile_id: int, load_job, scraped) -> None:
    service.submit_opportunity(profile_id, url=JOB_URL)
    job = load_job(service.submit_opportunity(profile_id, url="https://jobs.example.com/globex/platform-engineer?ref=li"))

    assert job.status == "duplicate"
    assert job.error == "You have already saved this job: Platform Engineer at Globex"
    assert job.phase_history == ["validating"]
    assert len(scraped["urls"]) == 1


def test_unreachable_url_fails_without_retry(service, profile_id: int, load_job, fake_llm, scraped) -> None:
    scraped["text"] = ""

    job = load_job(service.submit_opportunity(profile_id, url=JOB_URL))

    assert job.status == "failed"
    assert job.error == FETCH_FAILED_MESSAGE
    assert job.phase_history == ["validating", "enriching"]
    assert len(scraped["urls"]) == 1
    assert fake_llm.calls["extract_posting"] == 0


def test_empty_embedding_batch_fails_with_message(service, profile_id: int, load_job, fake_llm, settings) -> None:
    batches: list[list[str]] = []

    def empty_embed(texts: list[str]) -> list[list[float]]:
        batches.append(texts)
        return []

    fake_llm.embed = empty_embed

    job = load_job(service.submit_opportunity(profile_id, description=POSTING))

    assert job.status == "failed"
    assert job.error == EMBEDDING_FAILED_MESSAGE
    assert len(batches) == settings.ingestion_max_attempts
    assert job.opportunity_id is None


def test_research_failure_keeps_the_posting(service, profile_id: int, load_job, fake_llm) -> None:
    fake_llm.fail("research_company")

    job = load_job(service.submit_opportunity(profile_id, description=POSTING))

    assert job.status == "completed"
    assert job.warning == RESEARCH_WARNING
    with SessionLocal() as session:
        assert Repository(session).get_opportunity(job.opportunity_id).company_research_json == {}


def test_partial_posting_parse_is_reported(service, profile_id: int, load_job, fake_llm) -> None:
    fake_llm.posting_warning = "Couldn't fully parse the job posting; requirements may be incomplete"

    job = load_job(service.submit_opportunity(profile_id, description=POSTING))

    assert job.status == "completed"
    assert job.warning == fake_llm.posting_warning


def test_unknown_company_skips_research(service, profile_id: int, load_job, fake_llm) -> None:
    fake_llm.posting = fake_llm.posting.model_copy(update={"company": None})

    job = load_job(service.submit_opportunity(profile_id, description=POSTING))

    assert job.status == "completed"
    assert job.phase_history[-1] == "researching"
    assert fake_llm.calls["research_company"] == 0


def test_opportunity_needs_url_or_description(service, profile_id: int) -> None:
    with pytest.raises(ValueError):
        service.submit_opportunity(profile_id, url="  ", description="")
