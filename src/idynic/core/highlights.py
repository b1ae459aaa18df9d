from __future__ import annotations

import re
from datetime import UTC, datetime

from idynic.core.extraction import start_year
from idynic.types import EvidenceItem, ExtractedJob

NOTABLE_COMPANIES = frozenset(
    {
        "google", "meta", "facebook", "amazon", "apple", "microsoft", "netflix", "uber", "airbnb",
        "stripe", "twitter", "x", "linkedin", "salesforce", "oracle", "ibm", "intel", "nvidia",
        "adobe", "spotify", "snap", "dropbox", "slack", "zoom", "shopify", "square", "block",
        "paypal", "coinbase", "robinhood", "doordash", "instacart", "lyft", "pinterest",
    }
)

MAX_RESUME_HIGHLIGHTS = 6
MAX_QUANTIFIED_ACHIEVEMENTS = 3

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_DIGITS = re.compile(r"\d+")
_YEAR = re.compile(r"\d{4}")


def is_notable_company(company: str) -> bool:
    return _NON_ALNUM.sub("", company.lower()) in NOTABLE_COMPANIES


def tenure(job: ExtractedJob, *, current_year: int | None = None) -> str | None:
    begin = start_year(job)
    if not begin:
        return None

    if job.end_date:
        match = _YEAR.search(job.end_date)
        end = int(match.group(0)) if match else (current_year or datetime.now(UTC).year)
    else:
        end = current_year or datetime.now(UTC).year

    years = end - begin
    if years < 1:
        return None
    return f"{years} year{'' if years == 1 else 's'}"


def resume_highlights(
    evidence: list[EvidenceItem],
    work_history: list[ExtractedJob],
    *,
    current_year: int | None = None,
) -> list[str]:
    """The handful of things worth surfacing while a resume is processed."""
    highlights: list[str] = []

    for job in work_history:
        if is_notable_company(job.company):
            years = tenure(job, current_year=current_year)
            if years:
                highlights.append(f"{years} at {job.company}")

    highlights.extend(item.text for item in evidence if item.type == "certification")
    highlights.extend(item.text for item in evidence if item.type == "education")

    quantified = [item.text for item in evidence if item.type == "accomplishment" and _DIGITS.search(item.text)]
    highlights.extend(quantified[:MAX_QUANTIFIED_ACHIEVEMENTS])

    return highlights[:MAX_RESUME_HIGHLIGHTS]
