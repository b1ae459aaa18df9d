from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from idynic.jobs.errors import InvalidPhaseTransition

JobType = Literal["resume", "story", "opportunity", "tailor"]
JobStatus = Literal["pending", "processing", "completed", "failed", "duplicate"]

ResumePhase = Literal["validating", "parsing", "extracting", "embeddings", "synthesis", "reflection", "evaluation"]
StoryPhase = Literal["validating", "extracting", "embeddings", "synthesis", "reflection", "evaluation"]
OpportunityPhase = Literal["validating", "enriching", "extracting", "embeddings", "researching"]
TailorPhase = Literal["analyzing", "generating", "evaluating"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "duplicate"})


@dataclass(frozen=True, slots=True)
class JobKind:
    job_type: JobType
    phases: tuple[str, ...]

    def index_of(self, phase: str) -> int:
        try:
            return self.phases.index(phase)
        except ValueError:
            raise InvalidPhaseTransition(f"phase {phase!r} is not part of the {self.job_type} sequence") from None

    def check_transition(self, current: str | None, new: str) -> None:
        new_index = self.index_of(new)
        if current is None:
            return
        if new_index < self.index_of(current):
            raise InvalidPhaseTransition(f"{self.job_type} job cannot move back from {current!r} to {new!r}")

    def is_prefix(self, history: list[str]) -> bool:
        return tuple(history) == self.phases[: len(history)]


RESUME_JOB = JobKind(
    job_type="resume",
    phases=("validating", "parsing", "extracting", "embeddings", "synthesis", "reflection", "evaluation"),
)
STORY_JOB = JobKind(
    job_type="story",
    phases=("validating", "extracting", "embeddings", "synthesis", "reflection", "evaluation"),
)
OPPORTUNITY_JOB = JobKind(
    job_type="opportunity",
    phases=("validating", "enriching", "extracting", "embeddings", "researching"),
)
TAILOR_JOB = JobKind(
    job_type="tailor",
    phases=("analyzing", "generating", "evaluating"),
)

JOB_KINDS: dict[str, JobKind] = {kind.job_type: kind for kind in (RESUME_JOB, STORY_JOB, OPPORTUNITY_JOB, TAILOR_JOB)}


def kind_for(job_type: str) -> JobKind:
    try:
        return JOB_KINDS[job_type]
    except KeyError:
        raise ValueError(f"unknown job type {job_type!r}") from None


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
