from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, TypeAdapter
from sqlalchemy.orm import Session, sessionmaker

from idynic.config import Settings, get_settings
from idynic.db.repositories import Repository
from idynic.db.session import SessionLocal
from idynic.jobs.controller import JobController
from idynic.jobs.errors import NonRetriableError, user_message
from idynic.logging_config import JobLogAdapter, flush_log_handlers, job_logger

if TYPE_CHECKING:
    from idynic.pipelines.base import Pipeline


@dataclass(slots=True)
class StepRecord:
    name: str
    attempt: int
    duration_ms: int
    replayed: bool


@dataclass(slots=True)
class RunTelemetry:
    log: JobLogAdapter
    steps: list[StepRecord] = field(default_factory=list)
    attempts: int = 0
    outcome: str = "unknown"
    elapsed_ms: int = 0
    cleanups: list[Callable[[], None]] = field(default_factory=list)

    def record_step(self, record: StepRecord) -> None:
        self.steps.append(record)

    def add_cleanup(self, fn: Callable[[], None]) -> None:
        self.cleanups.append(fn)

    def run_cleanups(self) -> None:
        while self.cleanups:
            fn = self.cleanups.pop()
            try:
                fn()
            except Exception:
                self.log.exception("cleanup callback failed")

    def flush(self) -> None:
        executed = [step for step in self.steps if not step.replayed]
        self.log.info(
            "run finished outcome=%s attempts=%s steps=%s replayed=%s elapsed_ms=%s timings=%s",
            self.outcome,
            self.attempts,
            len(executed),
            len(self.steps) - len(executed),
            self.elapsed_ms,
            {step.name: step.duration_ms for step in executed},
        )
        flush_log_handlers()


@contextmanager
def job_run_scope(job_id: int, job_type: str) -> Iterator[RunTelemetry]:
    """Wraps a whole pipeline run; telemetry is flushed on every exit path."""
    telemetry = RunTelemetry(log=job_logger("idynic.jobs.run", job_id=job_id, job_type=job_type))
    started = time.monotonic()
    try:
        yield telemetry
    except BaseException:
        telemetry.outcome = "crashed"
        raise
    finally:
        telemetry.elapsed_ms = int((time.monotonic() - started) * 1000)
        telemetry.run_cleanups()
        telemetry.flush()


class StepContext:
    """Per-attempt handle a pipeline uses to run checkpointed steps and write job state."""

    def __init__(
        self,
        session: Session,
        job_id: int,
        *,
        attempt: int,
        telemetry: RunTelemetry,
        settings: Settings,
    ):
        self.session = session
        self.job_id = job_id
        self.attempt = attempt
        self.telemetry = telemetry
        self.settings = settings
        self.log = telemetry.log
        self.repo = Repository(session)
        self.jobs = JobController(session, job_id, settings=settings)

    def add_cleanup(self, fn: Callable[[], None]) -> None:
        """Register ``fn`` to run once when the whole run ends, whatever the outcome."""
        self.telemetry.add_cleanup(fn)

    def step(self, name: str, fn: Callable[[], Any], *, model: Any = None) -> Any:
        """Run ``fn`` once per job; later attempts get the stored output back."""
        existing = self.repo.get_step(self.job_id, name)
        if existing is not None:
            self.telemetry.record_step(StepRecord(name=name, attempt=self.attempt, duration_ms=0, replayed=True))
            return _restore(existing.output_json, model)

        started = time.monotonic()
        result = fn()
        duration_ms = int((time.monotonic() - started) * 1000)
        payload = _dump(result, model)
        self.repo.save_step(
            job_id=self.job_id,
            name=name,
            output=payload,
            attempt=self.attempt,
            duration_ms=duration_ms,
        )
        self.telemetry.record_step(
            StepRecord(name=name, attempt=self.attempt, duration_ms=duration_ms, replayed=False)
        )
        self.log.debug("step %s done in %sms", name, duration_ms)
        return _restore(payload, model)


def _dump(value: Any, model: Any) -> Any:
    if model is None:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")
        return value
    return TypeAdapter(model).dump_python(value, mode="json")


def _restore(payload: Any, model: Any) -> Any:
    if model is None:
        return payload
    return TypeAdapter(model).validate_python(payload)


@dataclass(slots=True)
class JobOutcome:
    job_id: int
    status: str
    summary: dict[str, Any] | None = None
    error: str | None = None
    warning: str | None = None


class StepExecutor:
    """Runs a pipeline with step checkpointing, bounded retries and a failure hook."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def execute(self, pipeline: Pipeline, event: BaseModel) -> JobOutcome:
        job_id: int = event.job_id  # type: ignore[attr-defined]
        max_attempts = max(1, pipeline.max_attempts)

        with job_run_scope(job_id, pipeline.kind.job_type) as telemetry:
            error: BaseException | None = None
            for attempt in range(1, max_attempts + 1):
                telemetry.attempts = attempt
                with self.session_factory() as session:
                    ctx = self._context(session, job_id, attempt, telemetry)
                    try:
                        pipeline.run(ctx, event)
                        error = None
                        break
                    except NonRetriableError as exc:
                        session.rollback()
                        error = exc
                        telemetry.log.warning("attempt %s failed without retry: %s", attempt, exc)
                        break
                    except Exception as exc:
                        session.rollback()
                        error = exc
                        telemetry.log.warning("attempt %s/%s failed: %s", attempt, max_attempts, exc)

            if error is not None:
                telemetry.log.error("run exhausted: %s", user_message(error), exc_info=error)
                self._run_failure_hook(pipeline, event, error, telemetry)

            outcome = self._outcome(job_id)
            telemetry.outcome = outcome.status
            return outcome

    def _run_failure_hook(
        self,
        pipeline: Pipeline,
        event: BaseModel,
        error: BaseException,
        telemetry: RunTelemetry,
    ) -> None:
        with self.session_factory() as session:
            ctx = self._context(session, event.job_id, telemetry.attempts, telemetry)  # type: ignore[attr-defined]
            try:
                pipeline.on_failure(ctx, event, error)
            except Exception:
                session.rollback()
                telemetry.log.exception("failure hook raised")
                ctx = self._context(session, event.job_id, telemetry.attempts, telemetry)  # type: ignore[attr-defined]
                ctx.jobs.set_error(user_message(error))

    def _context(self, session: Session, job_id: int, attempt: int, telemetry: RunTelemetry) -> StepContext:
        return StepContext(session, job_id, attempt=attempt, telemetry=telemetry, settings=self.settings)

    def _outcome(self, job_id: int) -> JobOutcome:
        with self.session_factory() as session:
            job = Repository(session).get_job(job_id)
            if job is None:
                return JobOutcome(job_id=job_id, status="missing")
            return JobOutcome(
                job_id=job.id,
                status=job.status,
                summary=job.summary,
                error=job.error,
                warning=job.warning,
            )
