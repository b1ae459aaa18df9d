from __future__ import annotations

import logging
from typing import Any

from idynic.config import get_settings


_LOG_CONFIGURED = False


def configure_logging() -> None:
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    _LOG_CONFIGURED = True


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the job it belongs to."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = self.extra or {}
        return f"job_id={extra.get('job_id')} job_type={extra.get('job_type')} {msg}", kwargs


def job_logger(name: str, *, job_id: int, job_type: str) -> JobLogAdapter:
    return JobLogAdapter(logging.getLogger(name), {"job_id": job_id, "job_type": job_type})


def flush_log_handlers() -> None:
    root = logging.getLogger()
    for handler in root.handlers:
        handler.flush()
