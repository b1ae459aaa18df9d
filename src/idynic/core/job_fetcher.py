from __future__ import annotations

import json
import logging

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def fetch_job_text(url: str, timeout_sec: int = 30) -> str:
    """Best-effort posting text for ``url``; empty string when the page can't be read."""
    try:
        response = requests.get(url, timeout=timeout_sec, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Failed to fetch job URL %s: %s", url, exc)
        return ""

    return html_to_posting_text(response.text)


def html_to_posting_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")

    structured = _job_posting_from_ld_json(soup)
    if structured:
        return structured

    for tag in soup(["script", "style", "noscript", "nav", "footer", "header"]):
        tag.extract()

    text = soup.get_text("\n")
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return "\n".join(lines)


def _job_posting_from_ld_json(soup: BeautifulSoup) -> str:
    # ATS pages usually embed a schema.org JobPosting; it beats scraping the chrome.
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue

        candidates = payload if isinstance(payload, list) else [payload]
        for item in candidates:
            if not isinstance(item, dict) or item.get("@type") != "JobPosting":
                continue

            title = str(item.get("title", "")).strip()
            organization = item.get("hiringOrganization") or {}
            company = organization.get("name", "") if isinstance(organization, dict) else ""
            description = BeautifulSoup(str(item.get("description", "")), "html.parser").get_text("\n")
            lines = [title, f"Company: {company}" if company else ""]
            lines.extend(line.strip() for line in description.splitlines())
            return "\n".join(line for line in lines if line)
    return ""
