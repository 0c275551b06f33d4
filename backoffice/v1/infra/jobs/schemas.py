"""
Job queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: dict[str, Any]
    status: str
    attempts: int
    run_after: datetime

    locked_at: datetime | None = None
    locked_by: str | None = None
    last_error: str | None = None

    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    pagination: Pagination


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + running
    stale_leases: int
    active_workers: int


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    job_type: str = Field(..., min_length=1, description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    run_after: datetime | None = Field(
        default=None, description="Earliest time to run the job"
    )


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID | None
    status: str | None
    deduplicated: bool = Field(
        default=False, description="Whether an identical job was already pending"
    )
