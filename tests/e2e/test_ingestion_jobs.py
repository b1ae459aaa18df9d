from __future__ import annotations

import pytest

from idynic.db.models import Document, Evidence
from idynic.db.repositories import Repository
from idynic.db.session import SessionLocal
from idynic.jobs.phases import RESUME_JOB, STORY_JOB
from idynic.pipelines.base import EMBEDDING_FAILED_MESSAGE, REFLECTION_WARNING, SYNTHESIS_WARNING
from idynic.types import ExtractedJob, ResumeContact

RESUME_TEXT = "Ada Lovelace\nStaff Engineer, Acme (2019 - 2023)\nLed the migration of 40 services to Kubernetes"


@pytest.fixture
def pdf_text(monkeypatch):
    """Skip real PDF parsing; uploads decode to whatever text the test sets."""
    state = {"text": RESUME_TEXT}
    monkeypatch.setattr("idynic.pipelines.resume.extract_pdf_text", lambda data: state["text"])
    return state


def _documents(user_id: int) -> list[Document]:
    with SessionLocal() as session:
        rows = session.query(Document).filter(Document.user_id == user_id).all()
        for row in rows:
            session.expunge(row)
        return rows


def test_story_runs_every_phase_and_creates_claims(service, profile_id: int, load_job, story_text) -> None:
    job_id = service.submit_story(profile_id, story_text())

    job = load_job(job_id)
    assert job.status == "completed"
    assert job.error is None
    assert job.warning is None
    assert job.phase_history == list(STORY_JOB.phases)
    assert job.summary == {
        "documentId": job.document_id,
        "evidenceCount": 2,
        "claimsCreated": 2,
        "claimsUpdated": 0,
        "issuesFound": 0,
    }

    kinds = [item["kind"] for item in job.highlights]
    assert kinds.count("created") == 2
    assert job.highlights[-1] == {"text": "Archetype: Builder", "kind": "found"}

    documents = _documents(profile_id)
    assert [(doc.type, doc.status) for doc in documents] == [("story", "completed")]

    with SessionLocal() as session:
        repo = Repository(session)
        assert repo.count_claims(profile_id) == 2
        assert repo.get_profile(profile_id).identity_archetype == "Builder"
        assert repo.get_usage(profile_id).uploads_count == 1


def test_resubmitted_story_is_marked_duplicate(service, profile_id: int, load_job, fake_llm, story_text) -> None:
    first = service.submit_story(profile_id, story_text())
    second = service.submit_story(profile_id, "  " + story_text().upper() + "\n")

    assert load_job(first).status == "completed"
    job = load_job(second)
    assert job.status == "duplicate"
    assert job.error.startswith("Duplicate story - already submitted on ")
    assert job.phase_history == ["validating"]
    assert len(_documents(profile_id)) == 1
    assert fake_llm.calls["extract_evidence"] == 1


def test_story_without_evidence_completes_early(service, profile_id: int, load_job, fake_llm, story_text) -> None:
    fake_llm.evidence = []

    job = load_job(service.submit_story(profile_id, story_text()))

    assert job.status == "completed"
    assert job.phase_history == ["validating", "extracting"]
    assert job.summary["evidenceCount"] == 0
    assert fake_llm.calls["embed"] == 0
    assert [doc.status for doc in _documents(profile_id)] == ["completed"]


def test_transient_failure_resumes_from_checkpoint(service, profile_id: int, load_job, fake_llm, story_text) -> None:
    fake_llm.fail("embed", times=1)

    job = load_job(service.submit_story(profile_id, story_text()))

    assert job.status == "completed"
    assert fake_llm.calls["extract_evidence"] == 1
    assert job.phase_history == list(STORY_JOB.phases)
    assert len(_documents(profile_id)) == 1


def test_extraction_failure_exhausts_retries(service, profile_id: int, load_job, fake_llm, story_text, settings) -> None:
    fake_llm.fail("extract_evidence")

    job = load_job(service.submit_story(profile_id, story_text()))

    assert job.status == "failed"
    assert job.error == "extract_evidence unavailable"
    assert job.phase_history == ["validating", "extracting"]
    assert STORY_JOB.is_prefix(job.phase_history)
    assert fake_llm.calls["extract_evidence"] == settings.ingestion_max_attempts
    assert _documents(profile_id) == []


def test_short_embedding_batch_fails_the_job(service, profile_id: int, load_job, fake_llm, story_text, settings) -> None:
    batches: list[list[str]] = []

    def short_embed(texts: list[str]) -> list[list[float]]:
        batches.append(texts)
        return []

    fake_llm.embed = short_embed

    job = load_job(service.submit_story(profile_id, story_text()))

    assert job.status == "failed"
    assert job.error == EMBEDDING_FAILED_MESSAGE
    assert len(batches) == settings.ingestion_max_attempts
    assert [doc.status for doc in _documents(profile_id)] == ["failed"]


def test_synthesis_failure_is_a_warning(service, profile_id: int, load_job, fake_llm, story_text) -> None:
    fake_llm.fail("synthesize_claims")

    job = load_job(service.submit_story(profile_id, story_text()))

    assert job.status == "completed"
    assert job.warning == SYNTHESIS_WARNING
    assert job.summary["claimsCreated"] == 0


def test_reflection_failure_is_a_warning(service, profile_id: int, load_job, fake_llm, story_text) -> None:
    fake_llm.fail("reflect_identity")

    job = load_job(service.submit_story(profile_id, story_text()))

    assert job.status == "completed"
    assert job.warning == REFLECTION_WARNING
    assert job.summary["claimsCreated"] == 2
    assert job.phase_history == list(STORY_JOB.phases)


def test_story_submission_is_validated(service, profile_id: int) -> None:
    with pytest.raises(ValueError):
        service.submit_story(profile_id, "too short")
    with pytest.raises(ValueError):
        service.submit_story(profile_id + 100, "x" * 500)


def test_unreadable_resume_fails_before_extraction(service, profile_id: int, load_job, fake_llm, pdf_text) -> None:
    pdf_text["text"] = "   "

    job = load_job(service.submit_resume(profile_id, "resume.pdf", b"%PDF-1.4 scanned"))

    assert job.status == "failed"
    assert job.error == "Could not extract text from PDF"
    assert job.phase_history == ["validating"]
    assert "extracting" not in job.phase_history
    assert fake_llm.calls["extract_evidence"] == 0
    assert _documents(profile_id) == []


def test_resume_stores_history_contact_and_links(service, profile_id: int, load_job, fake_llm, pdf_text) -> None:
    fake_llm.work_history = [ExtractedJob(company="Acme", title="Staff Engineer", start_date="2019", end_date="2023")]
    fake_llm.contact = ResumeContact(email="someone-else@example.com", phone="555-0100")

    job = load_job(service.submit_resume(profile_id, "Ada Resume.pdf", b"%PDF-1.4 resume"))

    assert job.status == "completed"
    assert job.phase_history == list(RESUME_JOB.phases)
    assert job.summary["workHistoryCount"] == 1
    assert job.summary["evidenceCount"] == 2
    assert {"text": "Led the migration of 40 services to Kubernetes, cutting deploy time by 60%", "kind": "found"} in job.highlights

    with SessionLocal() as session:
        repo = Repository(session)
        profile = repo.get_profile(profile_id)
        assert profile.email == "ada@example.com"
        assert profile.phone == "555-0100"

        history = repo.list_work_history(user_id=profile_id)
        evidence = session.query(Evidence).filter(Evidence.user_id == profile_id).order_by(Evidence.id).all()
        assert [row.work_history_id for row in evidence] == [history[0].id, None]
        assert evidence[0].source_type == "resume"
        assert evidence[0].evidence_date.year == 2023


def test_same_resume_twice_is_duplicate(service, profile_id: int, load_job, pdf_text) -> None:
    service.submit_resume(profile_id, "resume.pdf", b"%PDF-1.4 one")
    job = load_job(service.submit_resume(profile_id, "resume-copy.pdf", b"%PDF-1.4 two"))

    assert job.status == "duplicate"
    assert job.error.startswith("Duplicate document - already uploaded on ")
    assert job.phase_history == ["validating", "parsing"]


def test_resume_submission_is_validated(service, profile_id: int) -> None:
    with pytest.raises(ValueError):
        service.submit_resume(profile_id, "resume.docx", b"data")
    with pytest.raises(ValueError):
        service.submit_resume(profile_id, "resume.pdf", b"")
