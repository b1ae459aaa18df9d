from __future__ import annotations

from collections.abc import Generator

from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import Session

from idynic.config import get_settings
from idynic.db.session import get_db_session
from idynic.jobs.service import JobService


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_job_service(background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> JobService:
    settings = get_settings()
    dispatcher = background_tasks.add_task if settings.dispatch_mode == "background" else None
    return JobService(db, settings=settings, dispatcher=dispatcher)
