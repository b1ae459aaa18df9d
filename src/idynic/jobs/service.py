from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session

from idynic.config import Settings, get_settings
from idynic.db.repositories import Repository
from idynic.jobs.dedup import content_hash
from idynic.jobs.executor import JobOutcome, StepExecutor
from idynic.llm.router import LLMRouter
from idynic.pipelines.base import Pipeline
from idynic.pipelines.opportunity import OpportunityPipeline
from idynic.pipelines.resume import ResumePipeline
from idynic.pipelines.story import StoryPipeline
from idynic.pipelines.tailor import TailorPipeline
from idynic.types import (
    OpportunityTrigger,
    ResumeTrigger,
    StoryTrigger,
    TailorRequestResult,
    TailorTrigger,
)

logger = logging.getLogger(__name__)

PIPELINES: dict[str, type[Pipeline]] = {
    "resume": ResumePipeline,
    "story": StoryPipeline,
    "opportunity": OpportunityPipeline,
    "tailor": TailorPipeline,
}

Dispatcher = Callable[..., Any]

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


class JobService:
    """Creates job rows for incoming submissions and hands them to the step executor.

    ``dispatcher`` receives ``(fn, *args)`` and decides when ``fn`` runs: FastAPI's
    ``BackgroundTasks.add_task`` defers it past the response, the default runs it
    immediately.
    """

    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        llm: Any = None,
        executor: StepExecutor | None = None,
        dispatcher: Dispatcher | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repo = Repository(session)
        self.llm = llm
        self.executor = executor or StepExecutor(settings=self.settings)
        self.dispatcher = dispatcher

    def submit_resume(self, user_id: int, filename: str, data: bytes) -> int:
        self._require_profile(user_id)
        if not data:
            raise ValueError("uploaded file is empty")
        if not filename.lower().endswith(".pdf"):
            raise ValueError("only PDF resumes are supported")

        storage_path = self._store_upload(user_id, filename, data)
        self.repo.increment_usage(user_id, "uploads_count")
        job = self.repo.create_job(user_id=user_id, job_type="resume", filename=filename)
        logger.info("Queued resume job_id=%s user_id=%s file=%s", job.id, user_id, filename)
        self.dispatch(
            ResumeTrigger(job_id=job.id, user_id=user_id, filename=filename, storage_location=str(storage_path))
        )
        return job.id

    def submit_story(self, user_id: int, text: str) -> int:
        self._require_profile(user_id)
        text = (text or "").strip()
        if not self.settings.story_min_chars <= len(text) <= self.settings.story_max_chars:
            raise ValueError(
                f"story must be between {self.settings.story_min_chars} and {self.settings.story_max_chars} characters"
            )

        fingerprint = content_hash(text)
        self.repo.increment_usage(user_id, "uploads_count")
        job = self.repo.create_job(user_id=user_id, job_type="story", content_hash=fingerprint)
        logger.info("Queued story job_id=%s user_id=%s chars=%s", job.id, user_id, len(text))
        self.dispatch(StoryTrigger(job_id=job.id, user_id=user_id, text=text, content_hash=fingerprint))
        return job.id

    def submit_opportunity(self, user_id: int, url: str | None = None, description: str | None = None) -> int:
        self._require_profile(user_id)
        url = (url or "").strip() or None
        description = (description or "").strip() or None
        if url is None and description is None:
            raise ValueError("either a job URL or a job description is required")

        job = self.repo.create_job(user_id=user_id, job_type="opportunity")
        logger.info("Queued opportunity job_id=%s user_id=%s url=%s", job.id, user_id, url)
        self.dispatch(OpportunityTrigger(job_id=job.id, user_id=user_id, url=url, description=description))
        return job.id

    def request_tailor(self, user_id: int, opportunity_id: int, regenerate: bool = False) -> TailorRequestResult:
        self._require_profile(user_id)
        if self.repo.get_opportunity(opportunity_id, user_id=user_id) is None:
            raise ValueError(f"opportunity {opportunity_id} not found")

        if not regenerate:
            cached = self.repo.get_tailored_profile(user_id=user_id, opportunity_id=opportunity_id)
            if cached is not None:
                logger.info("Returning cached tailored profile_id=%s", cached.id)
                return TailorRequestResult(cached=True, profile_id=cached.id)

        job = self.repo.create_job(user_id=user_id, job_type="tailor")
        logger.info("Queued tailor job_id=%s opportunity_id=%s regenerate=%s", job.id, opportunity_id, regenerate)
        self.dispatch(
            TailorTrigger(job_id=job.id, user_id=user_id, opportunity_id=opportunity_id, regenerate=regenerate)
        )
        return TailorRequestResult(cached=False, job_id=job.id)

    def dispatch(self, event: BaseModel) -> None:
        job = self.repo.get_job(event.job_id)  # type: ignore[attr-defined]
        if job is None:
            raise ValueError(f"job {event.job_id} not found")  # type: ignore[attr-defined]

        if self.dispatcher is None:
            self.run(job.job_type, event)
        else:
            self.dispatcher(self.run, job.job_type, event)

    def run(self, job_type: str, event: BaseModel) -> JobOutcome:
        pipeline = PIPELINES[job_type](llm=self.llm or LLMRouter(self.settings), settings=self.settings)
        return self.executor.execute(pipeline, event)

    def _require_profile(self, user_id: int) -> None:
        if self.repo.get_profile(user_id) is None:
            raise ValueError(f"profile {user_id} does not exist")

    def _store_upload(self, user_id: int, filename: str, data: bytes) -> Path:
        folder = Path(self.settings.upload_dir) / str(user_id)
        folder.mkdir(parents=True, exist_ok=True)
        safe_name = _UNSAFE_FILENAME.sub("_", Path(filename).name) or "resume.pdf"
        path = folder / f"{uuid.uuid4().hex[:12]}-{safe_name}"
        path.write_bytes(data)
        return path
