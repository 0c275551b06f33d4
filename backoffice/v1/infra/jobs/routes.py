"""
Job administration API endpoints.

Lets operators inspect the queue, enqueue jobs by hand and re-queue failed jobs.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from backoffice.config.settings import Settings, SettingsDep
from backoffice.infra.database import Database, get_database
from backoffice.v1.core.exceptions import (
    NotFoundError,
    ValidationError,
    create_success_response,
)
from backoffice.v1.infra.jobs.models import JobStatus, JobType
from backoffice.v1.infra.jobs.schemas import (
    JobEnqueueRequest,
    JobEnqueueResponse,
    JobListResponse,
    JobResponse,
    Pagination,
)
from backoffice.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/jobs", tags=["jobs"])


def get_job_store(
    database: Database = Depends(get_database), settings: Settings = SettingsDep
) -> JobStore:
    """Dependency injection for the job store."""
    return JobStore(database.SessionLocal, settings.job_max_attempts)


JobStoreDep = Depends(get_job_store)


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest, store: JobStore = JobStoreDep
) -> dict[str, Any]:
    """Enqueue a background job. Identical pending jobs are deduplicated."""

    known_types = {job_type.value for job_type in JobType}
    if job_request.job_type not in known_types:
        raise ValidationError(
            f"Unknown job type: {job_request.job_type}",
            {"allowed": sorted(known_types)},
        )

    job = await store.enqueue(
        job_request.job_type, job_request.payload, job_request.run_after
    )

    result = JobEnqueueResponse(
        job_id=job.id if job else None,
        status=job.status if job else None,
        deduplicated=job is None,
    )

    logger.info(
        "Job enqueued via API",
        extra={
            "job_id": str(result.job_id) if result.job_id else None,
            "job_type": job_request.job_type,
            "deduplicated": result.deduplicated,
        },
    )

    return create_success_response(data=result.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_jobs(
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    job_type: str | None = Query(default=None, description="Filter by job type"),
    page: int = Query(default=1, ge=1, description="1-based page number"),
    limit: int = Query(default=50, ge=1, le=500, description="Page size"),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """List jobs newest first with filtering and pagination."""

    jobs, total = await store.list_jobs(
        status=status, job_type=job_type, page=page, limit=limit
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        pagination=Pagination(page=page, limit=limit, total=total),
    )

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    store: JobStore = JobStoreDep, settings: Settings = SettingsDep
) -> dict[str, Any]:
    """Get queue statistics."""

    stats = await store.get_stats(settings.worker_lease_ttl_s)
    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(job_id: UUID, store: JobStore = JobStoreDep) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await store.get_job(job_id)
    if not job:
        raise NotFoundError("Job not found", {"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(job_id: UUID, store: JobStore = JobStoreDep) -> dict[str, Any]:
    """Re-queue a failed job with a fresh retry budget."""

    job = await store.force_retry(job_id)

    logger.info("Job retried via API", extra={"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json"),
        message="Job re-queued",
    )
