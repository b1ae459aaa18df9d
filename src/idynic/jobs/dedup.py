from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.orm import Session

from idynic.db.repositories import Repository, hash_text, normalize_text

TRACKING_PARAMS = {"ref", "source", "trk", "gclid", "fbclid", "refid", "trackingid"}


def content_hash(text: str) -> str:
    return hash_text(normalize_text(text))


def normalize_job_url(url: str) -> str:
    parts = urlsplit(url.strip())
    scheme = (parts.scheme or "https").lower()
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]

    path = parts.path.rstrip("/")
    query = sorted(
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=False)
        if not key.lower().startswith("utm_") and key.lower() not in TRACKING_PARAMS
    )
    return urlunsplit((scheme, host, path, urlencode(query), ""))


@dataclass(slots=True)
class DuplicateHit:
    record_id: int
    created_at: datetime | None
    label: str

    @property
    def submitted_on(self) -> str:
        return self.created_at.date().isoformat() if self.created_at else "an earlier date"


class DedupGuard:
    def __init__(self, session: Session):
        self.repo = Repository(session)

    def check_document(
        self,
        *,
        user_id: int,
        content_hash: str,
        document_type: str,
        exclude_job_id: int | None = None,
    ) -> DuplicateHit | None:
        document = self.repo.find_document_by_hash(
            user_id=user_id,
            content_hash=content_hash,
            document_type=document_type,
            exclude_job_id=exclude_job_id,
        )
        if document is None:
            return None
        return DuplicateHit(record_id=document.id, created_at=document.created_at, label=document.filename)

    def check_opportunity(
        self,
        *,
        user_id: int,
        normalized_url: str,
        exclude_job_id: int | None = None,
    ) -> DuplicateHit | None:
        opportunity = self.repo.find_opportunity_by_url(
            user_id=user_id,
            normalized_url=normalized_url,
            exclude_job_id=exclude_job_id,
        )
        if opportunity is None:
            return None
        label = f"{opportunity.title} at {opportunity.company or 'Unknown'}"
        return DuplicateHit(record_id=opportunity.id, created_at=opportunity.created_at, label=label)


def duplicate_story_message(hit: DuplicateHit) -> str:
    return f"Duplicate story - already submitted on {hit.submitted_on}"


def duplicate_document_message(hit: DuplicateHit) -> str:
    return f"Duplicate document - already uploaded on {hit.submitted_on}"


def duplicate_opportunity_message(hit: DuplicateHit) -> str:
    return f"You have already saved this job: {hit.label}"
