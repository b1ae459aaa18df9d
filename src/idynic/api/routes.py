from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from idynic.api.deps import get_db, get_job_service
from idynic.api.schemas import (
    ClaimResponse,
    EvaluationResponse,
    IdentityResponse,
    JobAcceptedResponse,
    JobResponse,
    OpportunitySubmitRequest,
    ProfileCreateRequest,
    ProfileResponse,
    StorySubmitRequest,
    TailoredProfileResponse,
    TailorRequest,
    TailorResponse,
)
from idynic.db.models import Profile
from idynic.db.repositories import Repository
from idynic.jobs.service import JobService

router = APIRouter(prefix="/api", tags=["api"])


def _profile_response(profile: Profile) -> ProfileResponse:
    identity = None
    if profile.identity_generated_at is not None:
        identity = IdentityResponse(
            headline=profile.identity_headline,
            bio=profile.identity_bio,
            archetype=profile.identity_archetype,
            keywords=profile.identity_keywords or [],
            matches=profile.identity_matches or [],
            generated_at=profile.identity_generated_at,
        )
    return ProfileResponse(
        id=profile.id,
        name=profile.name,
        email=profile.email,
        phone=profile.phone,
        location=profile.location,
        linkedin=profile.linkedin,
        github=profile.github,
        website=profile.website,
        identity=identity,
    )


@router.post("/profiles", response_model=ProfileResponse)
def create_profile(payload: ProfileCreateRequest, db: Session = Depends(get_db)) -> ProfileResponse:
    repo = Repository(db)
    profile = repo.create_profile(name=payload.name, email=payload.email)
    return _profile_response(profile)


@router.get("/profiles/{profile_id}", response_model=ProfileResponse)
def get_profile(profile_id: int, db: Session = Depends(get_db)) -> ProfileResponse:
    profile = Repository(db).get_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return _profile_response(profile)


@router.post("/profiles/{profile_id}/resumes", status_code=202, response_model=JobAcceptedResponse)
def upload_resume(
    profile_id: int,
    file: UploadFile = File(...),
    service: JobService = Depends(get_job_service),
) -> JobAcceptedResponse:
    data = file.file.read()
    try:
        job_id = service.submit_resume(profile_id, file.filename or "resume.pdf", data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JobAcceptedResponse(job_id=job_id)


@router.post("/profiles/{profile_id}/stories", status_code=202, response_model=JobAcceptedResponse)
def submit_story(
    profile_id: int,
    payload: StorySubmitRequest,
    service: JobService = Depends(get_job_service),
) -> JobAcceptedResponse:
    try:
        job_id = service.submit_story(profile_id, payload.text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JobAcceptedResponse(job_id=job_id)


@router.post("/profiles/{profile_id}/opportunities", status_code=202, response_model=JobAcceptedResponse)
def submit_opportunity(
    profile_id: int,
    payload: OpportunitySubmitRequest,
    service: JobService = Depends(get_job_service),
) -> JobAcceptedResponse:
    try:
        job_id = service.submit_opportunity(profile_id, url=payload.url, description=payload.description)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JobAcceptedResponse(job_id=job_id)


@router.post("/profiles/{profile_id}/opportunities/{opportunity_id}/tailor", response_model=TailorResponse)
def request_tailor(
    profile_id: int,
    opportunity_id: int,
    payload: TailorRequest,
    service: JobService = Depends(get_job_service),
) -> JSONResponse:
    try:
        result = service.request_tailor(profile_id, opportunity_id, regenerate=payload.regenerate)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    body = TailorResponse.model_validate(result.model_dump()).model_dump()
    return JSONResponse(body, status_code=200 if result.cached else 202)


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: int, db: Session = Depends(get_db)) -> JobResponse:
    job = Repository(db).get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.model_validate(job)


@router.get("/profiles/{profile_id}/jobs", response_model=list[JobResponse])
def list_jobs(profile_id: int, limit: int = 50, db: Session = Depends(get_db)) -> list[JobResponse]:
    return [JobResponse.model_validate(row) for row in Repository(db).list_jobs(profile_id, limit=limit)]


@router.get("/profiles/{profile_id}/claims", response_model=list[ClaimResponse])
def list_claims(profile_id: int, db: Session = Depends(get_db)) -> list[ClaimResponse]:
    repo = Repository(db)
    if repo.get_profile(profile_id) is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return [ClaimResponse.model_validate(row) for row in repo.list_claims(profile_id)]


@router.get("/tailored-profiles/{profile_id}", response_model=TailoredProfileResponse)
def get_tailored_profile(profile_id: int, db: Session = Depends(get_db)) -> TailoredProfileResponse:
    repo = Repository(db)
    row = repo.get_tailored_profile_by_id(profile_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Tailored profile not found")

    log = repo.latest_eval_log(row.id)
    return TailoredProfileResponse(
        id=row.id,
        opportunity_id=row.opportunity_id,
        talking_points=row.talking_points_json or {},
        narrative=row.narrative,
        resume_data=row.resume_data_json or {},
        evaluation=EvaluationResponse.model_validate(log) if log else None,
    )
