import uuid
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException

from api.db.job_store import JobStore
from api.schemas.job import Job, StatusCounts
from common.errors import JobNotFound, StorageUnavailable

router = APIRouter()

@lru_cache
def job_store() -> JobStore:
    return JobStore()

@router.get("/jobs", response_model=StatusCounts)
def queue_status(store: JobStore = Depends(job_store)):
    try:
        return StatusCounts(**store.status_counts())
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Job store unavailable: {e}")

@router.get("/jobs/{job_id}", response_model=Job)
def get_job(job_id: uuid.UUID, store: JobStore = Depends(job_store)):
    try:
        return store.get(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="not found")
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Job store unavailable: {e}")

@router.get("/posts/{post_id}/job", response_model=Job)
def get_post_job(post_id: uuid.UUID, store: JobStore = Depends(job_store)):
    try:
        job = store.get_for_post(post_id)
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Job store unavailable: {e}")
    if job is None:
        raise HTTPException(status_code=404, detail="not found")
    return job
