"""
Durable job store: idempotent enqueue, atomic claim and state transitions.

Every write to ``job_queue`` goes through this module. Each operation is a
single conditional statement keyed on the row's current state, so concurrent
workers coordinate through the database alone.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, case, desc, func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.infra.database import UTCDateTime, utcnow
from backoffice.v1.core.exceptions import InvalidJobStateError, NotFoundError
from backoffice.v1.infra.jobs.models import Job, JobStatus
from backoffice.v1.infra.jobs.schemas import JobStatsResponse

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 4000


def generate_dedupe_key(job_type: str, payload: dict[str, Any]) -> str:
    """Generate a deterministic deduplication key for a job."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{job_type}:{canonical}".encode()).hexdigest()


class JobRepository(Protocol):
    """Operations the worker needs from a job store."""

    async def claim(
        self, worker_id: str, batch_size: int, lease_ttl_s: int
    ) -> list[Job]: ...

    async def mark_done(self, job_id: UUID, worker_id: str | None = None) -> bool: ...

    async def mark_retry(
        self,
        job_id: UUID,
        error: str,
        backoff_delay_s: float,
        worker_id: str | None = None,
    ) -> Job | None: ...

    async def mark_failed(
        self, job_id: UUID, error: str, worker_id: str | None = None
    ) -> bool: ...

    async def release(
        self,
        job_id: UUID,
        reason: str,
        worker_id: str | None = None,
        executed: bool = True,
    ) -> bool: ...


class JobStore:
    """SQLAlchemy-backed job store."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], max_attempts: int
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.session_factory = session_factory
        self.max_attempts = max_attempts

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        run_after: datetime | None = None,
    ) -> Job | None:
        """
        Enqueue a job unless an identical one is already pending.

        Returns:
            The new job, or None when a PENDING job with the same job_type and
            payload exists. A duplicate is not an error.
        """
        dedupe_key = generate_dedupe_key(job_type, payload)
        now = utcnow()

        async with self.session_factory() as session:
            existing_id = await session.scalar(
                select(Job.id)
                .where(
                    Job.dedupe_key == dedupe_key,
                    Job.status == JobStatus.PENDING.value,
                )
                .limit(1)
            )
            if existing_id is not None:
                logger.info(
                    "Job deduplicated",
                    extra={"job_id": str(existing_id), "job_type": job_type},
                )
                return None

            job = Job(
                job_type=job_type,
                payload=payload,
                status=JobStatus.PENDING.value,
                attempts=0,
                run_after=run_after or now,
                dedupe_key=dedupe_key,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            try:
                await session.commit()
            except IntegrityError:
                # Another caller inserted the same pending job first
                await session.rollback()
                logger.info(
                    "Job deduplicated by concurrent enqueue",
                    extra={"job_type": job_type, "dedupe_key": dedupe_key},
                )
                return None

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "job_type": job_type,
                "run_after": job.run_after.isoformat(),
            },
        )
        return job

    async def claim(
        self, worker_id: str, batch_size: int, lease_ttl_s: int
    ) -> list[Job]:
        """
        Atomically claim up to ``batch_size`` eligible jobs for ``worker_id``.

        Eligible jobs are PENDING with ``run_after <= now`` or RUNNING with a
        lease older than ``lease_ttl_s``. Candidates are locked with
        ``FOR UPDATE SKIP LOCKED`` and the eligibility predicate is repeated on
        the UPDATE itself, so two concurrent claimers never receive the same
        row. Returned jobs are ordered oldest-eligible first.
        """
        if batch_size <= 0:
            return []

        now = utcnow()
        lease_cutoff = now - timedelta(seconds=lease_ttl_s)
        eligible = or_(
            and_(Job.status == JobStatus.PENDING.value, Job.run_after <= now),
            and_(Job.status == JobStatus.RUNNING.value, Job.locked_at < lease_cutoff),
        )

        candidates = (
            select(Job.id)
            .where(eligible)
            .order_by(Job.run_after, Job.created_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )

        stmt = (
            update(Job)
            .where(Job.id.in_(candidates), eligible)
            .values(
                status=JobStatus.RUNNING.value,
                locked_by=worker_id,
                locked_at=now,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            jobs = list(result.scalars().all())
            await session.commit()

        if not jobs:
            return []

        jobs.sort(key=lambda job: (job.run_after, job.created_at))

        logger.info(
            "Claimed jobs",
            extra={
                "worker_id": worker_id,
                "job_count": len(jobs),
                "job_ids": [str(job.id) for job in jobs],
            },
        )
        return jobs

    async def mark_done(self, job_id: UUID, worker_id: str | None = None) -> bool:
        """Mark a running job as DONE and release its lease."""
        stmt = (
            update(Job)
            .where(*self._lease_conditions(job_id, worker_id))
            .values(
                status=JobStatus.DONE.value,
                locked_at=None,
                locked_by=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        updated = result.rowcount > 0
        if not updated:
            logger.warning(
                "Job completion not recorded, lease no longer held",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
        return updated

    async def mark_retry(
        self,
        job_id: UUID,
        error: str,
        backoff_delay_s: float,
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Record a failed attempt.

        ``attempts`` was already incremented by the claim that started this
        execution. If it has reached ``max_attempts`` the job becomes FAILED;
        otherwise it returns to PENDING with ``run_after = now + backoff``.
        Both branches record ``last_error`` and clear the lease in one
        statement.

        Returns:
            The updated job, or None if the lease was no longer held.
        """
        now = utcnow()
        next_run = now + timedelta(seconds=max(0.0, backoff_delay_s))
        exhausted = Job.attempts >= self.max_attempts

        stmt = (
            update(Job)
            .where(*self._lease_conditions(job_id, worker_id))
            .values(
                status=case(
                    (exhausted, literal(JobStatus.FAILED.value)),
                    else_=literal(JobStatus.PENDING.value),
                ),
                run_after=case(
                    (exhausted, Job.run_after),
                    else_=literal(next_run, UTCDateTime()),
                ),
                last_error=error[:MAX_ERROR_LENGTH],
                locked_at=None,
                locked_by=None,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                job = result.scalar_one_or_none()
                await session.commit()
            except IntegrityError:
                # An identical job was enqueued while this one ran; that one
                # carries the work forward
                await session.rollback()
                await self.mark_failed(
                    job_id, f"{error}; superseded by a pending duplicate", worker_id
                )
                return await self.get_job(job_id)

        if job is None:
            logger.warning(
                "Job failure not recorded, lease no longer held",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
        elif job.status == JobStatus.FAILED.value:
            logger.error(
                "Job moved to FAILED after exhausting retries",
                extra={
                    "job_id": str(job_id),
                    "job_type": job.job_type,
                    "attempts": job.attempts,
                    "error": error,
                },
            )
        else:
            logger.info(
                "Job scheduled for retry",
                extra={
                    "job_id": str(job_id),
                    "attempts": job.attempts,
                    "run_after": job.run_after.isoformat(),
                },
            )
        return job

    async def mark_failed(
        self, job_id: UUID, error: str, worker_id: str | None = None
    ) -> bool:
        """Dead-letter a running job immediately, without consuming retries."""
        stmt = (
            update(Job)
            .where(*self._lease_conditions(job_id, worker_id))
            .values(
                status=JobStatus.FAILED.value,
                last_error=error[:MAX_ERROR_LENGTH],
                locked_at=None,
                locked_by=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        return result.rowcount > 0

    async def release(
        self,
        job_id: UUID,
        reason: str,
        worker_id: str | None = None,
        executed: bool = True,
    ) -> bool:
        """
        Hand a running job back to the queue, immediately eligible.

        Used when a worker stops before the job finished. An interrupted
        attempt still counts, but the job is never dead-lettered here. With
        ``executed=False`` the handler never started, so the attempt added by
        ``claim`` is taken back.
        """
        now = utcnow()
        attempts = (
            Job.attempts
            if executed
            else case((Job.attempts > 0, Job.attempts - 1), else_=0)
        )
        stmt = (
            update(Job)
            .where(*self._lease_conditions(job_id, worker_id))
            .values(
                status=JobStatus.PENDING.value,
                run_after=now,
                attempts=attempts,
                last_error=reason[:MAX_ERROR_LENGTH],
                locked_at=None,
                locked_by=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except IntegrityError:
                # An identical job was enqueued meanwhile; that one will run
                await session.rollback()
                return await self.mark_failed(
                    job_id, f"{reason}; superseded by a pending duplicate", worker_id
                )

        released = result.rowcount > 0
        if released:
            logger.info(
                "Job released back to queue",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
        return released

    async def get_job(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def list_jobs(
        self,
        status: JobStatus | str | None = None,
        job_type: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Job], int]:
        """List jobs newest first, returning the page and the total match count."""
        query = select(Job)
        if status:
            query = query.where(Job.status == JobStatus(status).value)
        if job_type:
            query = query.where(Job.job_type == job_type)

        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(query.subquery())
            )
            result = await session.execute(
                query.order_by(desc(Job.created_at), desc(Job.id))
                .offset((page - 1) * limit)
                .limit(limit)
            )
            jobs = list(result.scalars().all())

        return jobs, total or 0

    async def force_retry(self, job_id: UUID) -> Job:
        """Reset a FAILED job to PENDING with a fresh retry budget."""
        now = utcnow()
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.FAILED.value)
            .values(
                status=JobStatus.PENDING.value,
                attempts=0,
                last_error=None,
                locked_at=None,
                locked_by=None,
                run_after=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            try:
                job = (await session.execute(stmt)).scalar_one_or_none()
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise InvalidJobStateError(
                    "An identical job is already pending",
                    {"job_id": str(job_id)},
                ) from None

            if job is None:
                existing = await session.get(Job, job_id)
                if existing is None:
                    raise NotFoundError("Job not found", {"job_id": str(job_id)})
                raise InvalidJobStateError(
                    "Only failed jobs can be retried",
                    {"job_id": str(job_id), "status": existing.status},
                )

        logger.info("Job force-retried", extra={"job_id": str(job_id)})
        return job

    async def get_stats(self, lease_ttl_s: int) -> JobStatsResponse:
        """Get queue statistics for the admin surface and health checks."""
        lease_cutoff = utcnow() - timedelta(seconds=lease_ttl_s)

        async with self.session_factory() as session:
            status_rows = await session.execute(
                select(Job.status, func.count(Job.id)).group_by(Job.status)
            )
            by_status = {status: count for status, count in status_rows.all()}

            type_rows = await session.execute(
                select(Job.job_type, func.count(Job.id)).group_by(Job.job_type)
            )
            by_type = {job_type: count for job_type, count in type_rows.all()}

            stale_leases = await session.scalar(
                select(func.count(Job.id)).where(
                    Job.status == JobStatus.RUNNING.value,
                    Job.locked_at < lease_cutoff,
                )
            )
            active_workers = await session.scalar(
                select(func.count(func.distinct(Job.locked_by))).where(
                    Job.status == JobStatus.RUNNING.value,
                    Job.locked_at >= lease_cutoff,
                )
            )

        queue_depth = by_status.get(JobStatus.PENDING.value, 0) + by_status.get(
            JobStatus.RUNNING.value, 0
        )

        return JobStatsResponse(
            total_jobs=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            stale_leases=stale_leases or 0,
            active_workers=active_workers or 0,
        )

    @staticmethod
    def _lease_conditions(job_id: UUID, worker_id: str | None) -> list[Any]:
        conditions = [Job.id == job_id, Job.status == JobStatus.RUNNING.value]
        if worker_id is not None:
            conditions.append(Job.locked_by == worker_id)
        return conditions
