from __future__ import annotations

import json

import requests

from idynic.core import job_fetcher
from idynic.core.job_fetcher import fetch_job_text, html_to_posting_text


def test_structured_job_posting_wins_over_page_chrome() -> None:
    posting = {
        "@context": "https://schema.org",
        "@type": "JobPosting",
        "title": "Backend Engineer",
        "hiringOrganization": {"@type": "Organization", "name": "Initech"},
        "description": "<p>Build APIs</p><ul><li>Python required</li></ul>",
    }
    html = (
        "<html><head><script type='application/ld+json'>"
        + json.dumps(posting)
        + "</script></head><body><nav>Jobs | About</nav><p>Apply now</p></body></html>"
    )

    text = html_to_posting_text(html)

    assert text.splitlines()[:2] == ["Backend Engineer", "Company: Initech"]
    assert "Python required" in text
    assert "Jobs | About" not in text


def test_plain_page_text_drops_scripts_and_navigation() -> None:
    html = (
        "<html><body><header>Careers</header><script>var x = 1;</script>"
        "<h1>Data Analyst</h1><p>Requirements: SQL</p><footer>(c) Initech</footer></body></html>"
    )

    assert html_to_posting_text(html) == "Data Analyst\nRequirements: SQL"


def test_fetch_failure_returns_empty_text(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(job_fetcher.requests, "get", boom)

    assert fetch_job_text("https://jobs.example.com/1") == ""
