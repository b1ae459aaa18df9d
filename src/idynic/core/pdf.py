from __future__ import annotations

import io
import logging
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)


def read_upload(storage_location: str) -> bytes:
    return Path(storage_location).read_bytes()


def extract_pdf_text(data: bytes) -> str:
    """Concatenated page text, or an empty string when the file has none we can read."""
    try:
        reader = PdfReader(io.BytesIO(data))
    except PdfReadError as exc:
        logger.warning("Unreadable PDF: %s", exc)
        return ""

    pages = []
    for page in reader.pages:
        pages.append(page.extract_text() or "")
    return "\n".join(pages).strip()
