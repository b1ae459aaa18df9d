from __future__ import annotations

import pytest
from fastapi import BackgroundTasks, Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from idynic.api.app import create_app
from idynic.api.deps import get_db, get_job_service
from idynic.jobs.service import JobService

STORY = (
    "When our on-call rotation burned out half the team, I rebuilt the alert routing, wrote runbooks for the "
    "twenty noisiest pages and ran weekly reviews. Pages dropped by seventy percent in a quarter and nobody "
    "left the team that year, which leadership later called the turnaround of the year."
)
POSTING = "Platform Engineer\nGlobex\nRequirements: Python services in production"


@pytest.fixture
def client(settings, fake_llm) -> TestClient:
    app = create_app()

    def job_service(background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> JobService:
        return JobService(db, settings=settings, llm=fake_llm, dispatcher=background_tasks.add_task)

    app.dependency_overrides[get_job_service] = job_service
    return TestClient(app)


def _profile(client: TestClient) -> int:
    response = client.post("/api/profiles", json={"name": "Ada Lovelace", "email": "ada@example.com"})
    assert response.status_code == 200
    return response.json()["id"]


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_profile_create_and_fetch(client: TestClient) -> None:
    profile_id = _profile(client)

    response = client.get(f"/api/profiles/{profile_id}")
    assert response.status_code == 200
    assert response.json()["email"] == "ada@example.com"
    assert response.json()["identity"] is None

    assert client.get("/api/profiles/9999").status_code == 404


def test_story_submission_runs_in_background(client: TestClient) -> None:
    profile_id = _profile(client)

    response = client.post(f"/api/profiles/{profile_id}/stories", json={"text": STORY})
    assert response.status_code == 202
    job_id = response.json()["job_id"]

    job = client.get(f"/api/jobs/{job_id}").json()
    assert job["status"] == "completed"
    assert job["job_type"] == "story"
    assert job["phase_history"][0] == "validating"
    assert job["summary"]["evidenceCount"] == 2
    assert {"text": "Archetype: Builder", "kind": "found"} in job["highlights"]

    claims = client.get(f"/api/profiles/{profile_id}/claims").json()
    assert len(claims) == 2

    profile = client.get(f"/api/profiles/{profile_id}").json()
    assert profile["identity"]["archetype"] == "Builder"

    jobs = client.get(f"/api/profiles/{profile_id}/jobs").json()
    assert [row["id"] for row in jobs] == [job_id]


def test_invalid_submissions_are_rejected(client: TestClient) -> None:
    profile_id = _profile(client)

    assert client.post(f"/api/profiles/{profile_id}/stories", json={"text": "short"}).status_code == 400
    assert client.post(f"/api/profiles/{profile_id}/opportunities", json={}).status_code == 400
    response = client.post(
        f"/api/profiles/{profile_id}/resumes",
        files={"file": ("resume.txt", b"plain text", "text/plain")},
    )
    assert response.status_code == 400
    assert client.get("/api/jobs/9999").status_code == 404


def test_resume_upload_is_accepted(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr("idynic.pipelines.resume.extract_pdf_text", lambda data: "Ada Lovelace\nPython")
    profile_id = _profile(client)

    response = client.post(
        f"/api/profiles/{profile_id}/resumes",
        files={"file": ("resume.pdf", b"%PDF-1.4 test", "application/pdf")},
    )

    assert response.status_code == 202
    job = client.get(f"/api/jobs/{response.json()['job_id']}").json()
    assert job["status"] == "completed"
    assert job["job_type"] == "resume"


def test_tailor_flow_returns_cached_profile_second_time(client: TestClient) -> None:
    profile_id = _profile(client)
    client.post(f"/api/profiles/{profile_id}/stories", json={"text": STORY})
    job_id = client.post(f"/api/profiles/{profile_id}/opportunities", json={"description": POSTING}).json()["job_id"]
    opportunity_id = client.get(f"/api/jobs/{job_id}").json()["opportunity_id"]

    first = client.post(f"/api/profiles/{profile_id}/opportunities/{opportunity_id}/tailor", json={})
    assert first.status_code == 202
    assert first.json()["cached"] is False
    tailor_job = client.get(f"/api/jobs/{first.json()['job_id']}").json()
    assert tailor_job["status"] == "completed"

    second = client.post(f"/api/profiles/{profile_id}/opportunities/{opportunity_id}/tailor", json={})
    assert second.status_code == 200
    assert second.json() == {"cached": True, "job_id": None, "profile_id": tailor_job["tailored_profile_id"]}

    profile = client.get(f"/api/tailored-profiles/{tailor_job['tailored_profile_id']}").json()
    assert profile["opportunity_id"] == opportunity_id
    assert profile["narrative"]
    assert profile["evaluation"]["passed"] is True


def test_tailor_unknown_opportunity_is_404(client: TestClient) -> None:
    profile_id = _profile(client)

    response = client.post(f"/api/profiles/{profile_id}/opportunities/4242/tailor", json={"regenerate": True})

    assert response.status_code == 404
    assert client.get("/api/tailored-profiles/4242").status_code == 404
