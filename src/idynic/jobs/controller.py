from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from idynic.config import Settings, get_settings
from idynic.db.models import Job
from idynic.db.repositories import Repository
from idynic.jobs.errors import JobNotFound, JobUpdateConflict
from idynic.jobs.phases import JobKind, is_terminal, kind_for
from idynic.types import Highlight, HighlightKind

logger = logging.getLogger(__name__)


class JobController:
    """The only writer of job rows.

    Every operation is a compare-and-swap on ``Job.version``: the row is re-read,
    the change is computed from that snapshot and written only if nobody else
    bumped the version in between. Concurrent highlight appends therefore never
    lose entries. Writes against a terminal job are dropped.
    """

    def __init__(
        self,
        session: Session,
        job_id: int,
        *,
        settings: Settings | None = None,
        max_conflict_retries: int = 5,
    ):
        self.settings = settings or get_settings()
        self.repo = Repository(session)
        self.job_id = job_id
        self.max_conflict_retries = max_conflict_retries

        job = self.repo.get_job(job_id)
        if job is None:
            raise JobNotFound(f"job {job_id} not found")
        self.kind: JobKind = kind_for(job.job_type)

    def snapshot(self) -> Job:
        job = self.repo.get_job(self.job_id, fresh=True)
        if job is None:
            raise JobNotFound(f"job {self.job_id} not found")
        return job

    def set_phase(self, phase: str, progress: str | None = None) -> Job:
        def compute(job: Job) -> dict[str, Any]:
            self.kind.check_transition(job.phase, phase)
            values: dict[str, Any] = {"status": "processing", "phase": phase, "progress": progress}
            if job.started_at is None:
                values["started_at"] = datetime.now(UTC)
            if job.phase != phase:
                values["phase_history"] = [*(job.phase_history or []), phase]
            return values

        return self._write("set_phase", compute)

    def update_progress(self, text: str) -> Job:
        return self._write("update_progress", lambda job: {"progress": text})

    def add_highlight(self, text: str, kind: HighlightKind = "found", *, once: bool = False) -> Job:
        return self.add_highlights([Highlight(text=text, kind=kind)], once=once)

    def add_highlights(self, items: Iterable[Highlight], *, once: bool = False) -> Job:
        """Append highlights, keeping the newest ``highlight_limit``.

        With ``once`` an entry already on the job is not appended again, so a
        retried step does not repeat the lines it wrote before failing.
        """
        new_items = [item.model_dump() for item in items]
        if not new_items:
            return self.snapshot()

        limit = self.settings.highlight_limit

        def compute(job: Job) -> dict[str, Any]:
            current = job.highlights or []
            pending = [item for item in new_items if item not in current] if once else new_items
            if not pending:
                return {}
            return {"highlights": [*current, *pending][-limit:]}

        return self._write("add_highlights", compute)

    def set_warning(self, text: str) -> Job:
        return self._write("set_warning", lambda job: {"warning": text})

    def set_error(self, text: str) -> Job:
        return self._write(
            "set_error",
            lambda job: {"status": "failed", "error": text, "completed_at": datetime.now(UTC)},
        )

    def mark_duplicate(self, text: str) -> Job:
        return self._write(
            "mark_duplicate",
            lambda job: {"status": "duplicate", "error": text, "completed_at": datetime.now(UTC)},
        )

    def complete(
        self,
        summary: dict[str, Any],
        *,
        document_id: int | None = None,
        opportunity_id: int | None = None,
        tailored_profile_id: int | None = None,
    ) -> Job:
        def compute(job: Job) -> dict[str, Any]:
            values: dict[str, Any] = {
                "status": "completed",
                "summary": summary,
                "completed_at": datetime.now(UTC),
            }
            if document_id is not None:
                values["document_id"] = document_id
            if opportunity_id is not None:
                values["opportunity_id"] = opportunity_id
            if tailored_profile_id is not None:
                values["tailored_profile_id"] = tailored_profile_id
            return values

        return self._write("complete", compute)

    def _write(self, operation: str, compute: Callable[[Job], dict[str, Any]]) -> Job:
        for attempt in range(1, self.max_conflict_retries + 1):
            job = self.snapshot()
            if is_terminal(job.status):
                logger.warning(
                    "Dropping %s on terminal job job_id=%s status=%s", operation, self.job_id, job.status
                )
                return job

            values = compute(job)
            if not values:
                return job
            if self.repo.compare_and_swap_job(self.job_id, job.version, values):
                return self.snapshot()

            logger.info("Job row changed during %s job_id=%s attempt=%s", operation, self.job_id, attempt)

        raise JobUpdateConflict(f"could not apply {operation} to job {self.job_id}")
