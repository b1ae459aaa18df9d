from __future__ import annotations

import pytest

from idynic.config import Settings
from idynic.db.repositories import Repository
from idynic.db.session import SessionLocal
from idynic.jobs.controller import JobController
from idynic.jobs.errors import InvalidPhaseTransition, JobUpdateConflict


def _story_job(session, profile_id: int) -> int:
    return Repository(session).create_job(user_id=profile_id, job_type="story").id


def test_phase_history_records_each_new_phase_once(db_session, profile_id: int, settings: Settings) -> None:
    controller = JobController(db_session, _story_job(db_session, profile_id), settings=settings)

    controller.set_phase("validating")
    controller.set_phase("extracting", progress="0/3")
    job = controller.set_phase("extracting", progress="2/3")

    assert job.status == "processing"
    assert job.phase_history == ["validating", "extracting"]
    assert job.progress == "2/3"
    assert job.started_at is not None


def test_regressing_phase_is_rejected(db_session, profile_id: int, settings: Settings) -> None:
    controller = JobController(db_session, _story_job(db_session, profile_id), settings=settings)
    controller.set_phase("synthesis")

    with pytest.raises(InvalidPhaseTransition):
        controller.set_phase("extracting")


def test_highlights_keep_newest_entries(db_session, profile_id: int, settings: Settings) -> None:
    controller = JobController(db_session, _story_job(db_session, profile_id), settings=settings)

    for index in range(25):
        controller.add_highlight(f"item {index}", kind="created" if index % 2 else "found")

    highlights = controller.snapshot().highlights
    assert len(highlights) == 20
    assert highlights[0]["text"] == "item 5"
    assert highlights[-1] == {"text": "item 24", "kind": "found"}


def test_once_highlights_are_not_repeated(db_session, profile_id: int, settings: Settings) -> None:
    controller = JobController(db_session, _story_job(db_session, profile_id), settings=settings)

    controller.add_highlight("Building tailored resume...", once=True)
    version = controller.snapshot().version
    job = controller.add_highlight("Building tailored resume...", once=True)

    assert job.version == version
    controller.add_highlight("Building tailored resume...")
    assert [item["text"] for item in controller.snapshot().highlights] == ["Building tailored resume..."] * 2


def test_writes_after_terminal_status_are_dropped(db_session, profile_id: int, settings: Settings) -> None:
    controller = JobController(db_session, _story_job(db_session, profile_id), settings=settings)
    controller.set_phase("validating")
    controller.complete({"evidenceCount": 0})

    controller.set_error("late failure")
    controller.add_highlight("late highlight")
    job = controller.set_phase("extracting")

    assert job.status == "completed"
    assert job.error is None
    assert job.highlights == []
    assert job.phase_history == ["validating"]


def test_duplicate_is_terminal(db_session, profile_id: int, settings: Settings) -> None:
    controller = JobController(db_session, _story_job(db_session, profile_id), settings=settings)

    job = controller.mark_duplicate("Duplicate story - already submitted on 2026-01-01")

    assert job.status == "duplicate"
    assert job.completed_at is not None
    assert controller.set_warning("ignored").warning is None


def test_concurrent_highlight_append_is_not_lost(db_session, profile_id: int, settings: Settings, monkeypatch) -> None:
    job_id = _story_job(db_session, profile_id)
    writer = JobController(db_session, job_id, settings=settings)
    original = writer.repo.compare_and_swap_job
    raced = {"done": False}

    def racing_compare_and_swap(job_id: int, expected_version: int, values: dict) -> bool:
        if not raced["done"]:
            raced["done"] = True
            with SessionLocal() as other_session:
                JobController(other_session, job_id, settings=settings).add_highlight("from other writer")
        return original(job_id, expected_version, values)

    monkeypatch.setattr(writer.repo, "compare_and_swap_job", racing_compare_and_swap)

    writer.add_highlight("from writer")

    texts = [item["text"] for item in writer.snapshot().highlights]
    assert texts == ["from other writer", "from writer"]


def test_persistent_conflict_raises(db_session, profile_id: int, settings: Settings, monkeypatch) -> None:
    controller = JobController(db_session, _story_job(db_session, profile_id), settings=settings, max_conflict_retries=3)
    monkeypatch.setattr(controller.repo, "compare_and_swap_job", lambda *args: False)

    with pytest.raises(JobUpdateConflict):
        controller.set_warning("never lands")
