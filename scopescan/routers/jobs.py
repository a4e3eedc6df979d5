import uuid as uuid_mod

from fastapi import APIRouter, HTTPException
from sqlalchemy import select

from scopescan.database import async_session
from scopescan.models.job import Job
from scopescan.models.photo import Photo
from scopescan.schemas.job import JobCreate, JobResponse, PhotoCreate, PhotoResponse
from scopescan.utils.response import success_response

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", status_code=201)
async def create_job(payload: JobCreate):
    async with async_session() as session:
        job_id = payload.id or str(uuid_mod.uuid4())

        # Idempotent create
        existing = await session.get(Job, job_id)
        if existing:
            return success_response(data=JobResponse.model_validate(existing).model_dump(mode="json"))

        job = Job(id=job_id, title=payload.title, address=payload.address)
        session.add(job)
        await session.commit()
        await session.refresh(job)

        data = JobResponse.model_validate(job).model_dump(mode="json")
    return success_response(data=data)


@router.get("/{job_id}")
async def get_job(job_id: str):
    async with async_session() as session:
        job = await session.get(Job, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        data = JobResponse.model_validate(job).model_dump(mode="json")
    return success_response(data=data)


@router.post("/{job_id}/photos", status_code=201)
async def add_photo(job_id: str, payload: PhotoCreate):
    async with async_session() as session:
        job = await session.get(Job, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        photo = Photo(
            id=str(uuid_mod.uuid4()),
            job_id=job_id,
            image_url=payload.image_url,
            kind=payload.kind,
            findings_status="pending",
        )
        session.add(photo)
        await session.commit()
        await session.refresh(photo)

        data = PhotoResponse.model_validate(photo).model_dump(mode="json")
    return success_response(data=data)


@router.get("/{job_id}/photos")
async def list_photos(job_id: str):
    async with async_session() as session:
        job = await session.get(Job, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        result = await session.execute(
            select(Photo).where(Photo.job_id == job_id).order_by(Photo.created_at)
        )
        data = [PhotoResponse.model_validate(p).model_dump(mode="json") for p in result.scalars().all()]
    return success_response(data=data)
