from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors raised by job pipelines."""


class StageFailed(PipelineError):
    """A fatal stage error; the executor retries it."""


class NonRetriableError(PipelineError):
    """A fatal error that retrying cannot fix; goes straight to the failure hook."""


class ValidationFailed(NonRetriableError):
    pass


class ExtractionEmpty(NonRetriableError):
    pass


class InvalidPhaseTransition(NonRetriableError):
    pass


class JobNotFound(PipelineError):
    pass


class JobUpdateConflict(PipelineError):
    """Raised when a job row keeps changing underneath a writer."""


def user_message(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__
