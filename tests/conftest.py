from __future__ import annotations

import os
import tempfile
from collections import Counter
from collections.abc import Callable
from pathlib import Path
from typing import Any

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="idynic-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'idynic-test.db'}"
os.environ["DATA_DIR"] = str(_TEST_ROOT)
os.environ["UPLOAD_DIR"] = str(_TEST_ROOT / "uploads")
os.environ["OPENAI_API_KEY"] = ""
os.environ["LOCAL_LLM_ENABLED"] = "false"
os.environ["APP_ENV"] = "test"
os.environ["DISPATCH_MODE"] = "inline"

import pytest  # noqa: E402

from idynic.config import Settings, get_settings  # noqa: E402
from idynic.db import models  # noqa: E402,F401
from idynic.db.base import Base  # noqa: E402
from idynic.db.repositories import Repository  # noqa: E402
from idynic.db.session import SessionLocal, engine  # noqa: E402
from idynic.jobs.service import JobService  # noqa: E402
from idynic.llm.embeddings import HashedEmbedder  # noqa: E402
from idynic.llm.router import LLMUnavailableError  # noqa: E402
from idynic.types import (  # noqa: E402
    ClaimGroundingIssue,
    CompanyResearch,
    EvidenceItem,
    ExtractedJob,
    IdentityReflection,
    PostingExtraction,
    ResumeContact,
    ResumeData,
    SynthesisDecision,
    TailoringEvaluation,
    TalkingPoints,
)

DEFAULT_EVIDENCE: list[dict[str, Any]] = [
    {
        "text": "Led the migration of 40 services to Kubernetes, cutting deploy time by 60%",
        "type": "accomplishment",
        "context": {"role": "Staff Engineer", "company": "Acme", "dates": "2019 - 2023"},
    },
    {"text": "Python", "type": "skill_listed"},
]


class FakeLLM:
    """Scripted stand-in for ``LLMRouter``.

    ``failures`` maps an operation name to how many of its next calls raise
    ``LLMUnavailableError``.
    """

    def __init__(self) -> None:
        self.embedder = HashedEmbedder()
        self.calls: Counter[str] = Counter()
        self.failures: dict[str, int] = {}
        self.evidence: list[dict[str, Any]] = [dict(item) for item in DEFAULT_EVIDENCE]
        self.work_history: list[ExtractedJob] = []
        self.contact = ResumeContact()
        self.posting = PostingExtraction.model_validate(
            {
                "title": "Platform Engineer",
                "company": "Globex",
                "requirements": {
                    "mustHave": [{"text": "Python services in production", "type": "skill"}],
                    "niceToHave": [{"text": "Kubernetes migrations", "type": "skill"}],
                },
                "responsibilities": ["Own the deploy pipeline"],
            }
        )
        self.posting_warning: str | None = None
        self.decisions: list[SynthesisDecision] = []
        self.reflection = IdentityReflection(headline="Platform engineer", archetype="builder")
        self.grounding_issues: list[ClaimGroundingIssue] = []
        self.talking_points: TalkingPoints | None = None
        self.narrative: str | None = None
        self.resume: ResumeData | None = None
        self.evaluation = TailoringEvaluation(passed=True, grounding_passed=True, eval_model="fake")
        self.research = CompanyResearch(overview="Globex builds infrastructure tools.")

    def fail(self, operation: str, times: int = 1_000) -> None:
        self.failures[operation] = times

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        remaining = self.failures.get(operation, 0)
        if remaining > 0:
            self.failures[operation] = remaining - 1
            raise LLMUnavailableError(f"{operation} unavailable")

    def extract_evidence(self, *, text: str, source_type: str) -> list[EvidenceItem]:
        self._enter("extract_evidence")
        return [EvidenceItem.model_validate({**item, "source_type": source_type}) for item in self.evidence]

    def extract_work_history(self, *, text: str) -> list[ExtractedJob]:
        self._enter("extract_work_history")
        return list(self.work_history)

    def extract_resume_contact(self, *, text: str) -> ResumeContact:
        self._enter("extract_resume_contact")
        return self.contact

    def extract_posting(self, *, text: str) -> tuple[PostingExtraction, str | None]:
        self._enter("extract_posting")
        return self.posting, self.posting_warning

    def embed(self, texts: list[str]) -> list[list[float]]:
        self._enter("embed")
        return self.embedder.embed(texts)

    def synthesize_claims(self, *, evidence: list[dict[str, Any]], claims: list[dict[str, Any]]) -> list[SynthesisDecision]:
        self._enter("synthesize_claims")
        return list(self.decisions)

    def reflect_identity(self, *, claims: list[dict[str, Any]], fields: list[str], archetypes: tuple[str, ...]) -> IdentityReflection:
        self._enter("reflect_identity")
        return self.reflection

    def ground_claims(self, *, claims: list[dict[str, Any]]) -> list[ClaimGroundingIssue]:
        self._enter("ground_claims")
        return list(self.grounding_issues)

    def generate_talking_points(self, **kwargs: Any) -> TalkingPoints | None:
        self._enter("generate_talking_points")
        return self.talking_points

    def generate_narrative(self, **kwargs: Any) -> str | None:
        self._enter("generate_narrative")
        return self.narrative

    def generate_resume(self, **kwargs: Any) -> ResumeData | None:
        self._enter("generate_resume")
        return self.resume

    def evaluate_tailoring(self, **kwargs: Any) -> TailoringEvaluation:
        self._enter("evaluate_tailoring")
        return self.evaluation

    def research_company(self, *, company: str, title: str, description: str) -> CompanyResearch:
        self._enter("research_company")
        return self.research


@pytest.fixture(autouse=True)
def reset_db() -> None:
    get_settings.cache_clear()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="", local_llm_enabled=False, dispatch_mode="inline", upload_dir=_TEST_ROOT / "uploads")


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def db_session():
    with SessionLocal() as session:
        yield session


@pytest.fixture
def profile_id(db_session) -> int:
    return Repository(db_session).create_profile(name="Ada Lovelace", email="ada@example.com").id


@pytest.fixture
def service(db_session, settings: Settings, fake_llm: FakeLLM) -> JobService:
    return JobService(db_session, settings=settings, llm=fake_llm)


@pytest.fixture
def load_job() -> Callable[[int], models.Job]:
    """Read a job row from a fresh session so pipeline writes are visible."""

    def _load(job_id: int) -> models.Job:
        with SessionLocal() as session:
            job = Repository(session).get_job(job_id)
            assert job is not None
            session.expunge(job)
            return job

    return _load


@pytest.fixture
def story_text() -> Callable[[str], str]:
    def _story(topic: str = "deploys") -> str:
        return (
            f"Last spring our team kept losing whole afternoons to {topic}. I wrote a small tool that "
            "checked every service before release, then paired with each team lead until they trusted it. "
            "Within two months failed releases dropped from weekly to almost never, and I ended up "
            "presenting the approach at our engineering all-hands."
        )

    return _story
