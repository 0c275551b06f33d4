"""
Database-backed job worker with leases, retries and graceful shutdown.
"""

import asyncio
import os
import socket
from collections.abc import Callable
from enum import Enum
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.config.logging import get_logger
from backoffice.config.settings import Settings
from backoffice.v1.core.registries import JobHandlerRegistry, JobResult
from backoffice.v1.infra.jobs.models import Job
from backoffice.v1.infra.jobs.retry import backoff_for_settings
from backoffice.v1.infra.jobs.store import JobRepository

logger = get_logger(__name__)

SHUTDOWN_REASON = "Worker shut down before job completed"


class WorkerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class JobWorker:
    """
    Polls the job store and dispatches claimed jobs to their handlers.

    Features:
    - Atomic batch claims, so any number of workers can share one queue
    - Lease expiry recovery (handled by the claim itself)
    - Exponential backoff with jitter for retries
    - Bounded in-process concurrency
    - Graceful shutdown that hands unfinished jobs back to the queue
    """

    def __init__(
        self,
        store: JobRepository,
        registry: JobHandlerRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        worker_id: str | None = None,
        backoff: Callable[[int], float] | None = None,
    ):
        self.store = store
        self.registry = registry
        self.session_factory = session_factory
        self.settings = settings
        self.worker_id = worker_id or settings.worker_id or default_worker_id()
        self.backoff = backoff or (lambda attempts: backoff_for_settings(settings, attempts))

        self.state = WorkerState.IDLE
        self._stop_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(settings.worker_concurrency)
        self._in_flight: set[asyncio.Task] = set()
        self._running = False
        self.logger = logger.bind(worker_id=self.worker_id)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self) -> None:
        """Ask the worker to stop claiming and finish in-flight jobs."""
        if self.state != WorkerState.STOPPED:
            self.state = WorkerState.SHUTTING_DOWN
        if not self._stop_event.is_set():
            self.logger.info("Shutdown requested", in_flight=len(self._in_flight))
            self._stop_event.set()

    async def run(self) -> None:
        """Poll until ``request_stop()`` is called."""
        if self._running:
            raise RuntimeError("Worker is already running")

        self._running = True
        poll_interval_s = self.settings.worker_poll_interval_ms / 1000
        self.logger.info(
            "Starting job worker",
            batch_size=self.settings.worker_batch_size,
            concurrency=self.settings.worker_concurrency,
            poll_interval_ms=self.settings.worker_poll_interval_ms,
            lease_ttl_s=self.settings.worker_lease_ttl_s,
        )

        try:
            while not self.stopping:
                claimed = await self.run_once()
                # A full batch means more work is probably waiting
                if claimed >= self.settings.worker_batch_size:
                    continue
                await self._wait_for_stop(poll_interval_s)
        finally:
            self._running = False
            self.state = WorkerState.STOPPED
            self.logger.info("Job worker stopped")

    async def run_once(self) -> int:
        """
        Run a single poll cycle.

        Returns:
            Number of jobs claimed in this cycle
        """
        if self.stopping:
            return 0

        self.state = WorkerState.POLLING
        try:
            jobs = await self.store.claim(
                self.worker_id,
                self.settings.worker_batch_size,
                self.settings.worker_lease_ttl_s,
            )
        except Exception:
            self.logger.exception("Failed to claim jobs, retrying next cycle")
            self._settle()
            return 0

        if not jobs:
            self._settle()
            return 0

        self.state = WorkerState.DISPATCHING
        batch = asyncio.create_task(self._dispatch_batch(jobs))
        stop_waiter = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait({batch, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not batch.done():
                await self._drain(batch)
        finally:
            stop_waiter.cancel()

        self._settle()
        return len(jobs)

    async def _dispatch_batch(self, jobs: list[Job]) -> None:
        tasks = []
        for job in jobs:
            task = asyncio.create_task(self._run_job(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain(self, batch: asyncio.Task) -> None:
        """Give in-flight jobs the grace period, then cancel the rest."""
        grace_s = self.settings.worker_shutdown_grace_s
        self.logger.info(
            "Waiting for in-flight jobs", in_flight=len(self._in_flight), grace_s=grace_s
        )
        done, _ = await asyncio.wait({batch}, timeout=grace_s)
        if done:
            return

        self.logger.warning(
            "Grace period elapsed, cancelling in-flight jobs",
            in_flight=len(self._in_flight),
        )
        for task in list(self._in_flight):
            task.cancel()
        await batch

    async def _run_job(self, job: Job) -> None:
        job_logger = self.logger.bind(
            job_id=str(job.id), job_type=job.job_type, attempt=job.attempts
        )
        try:
            async with self._semaphore:
                if self.stopping:
                    job_logger.info("Releasing job not started before shutdown")
                    await self.store.release(
                        job.id, SHUTDOWN_REASON, self.worker_id, executed=False
                    )
                    return
                result = await self._execute(job, job_logger)
                await self._record(job, result, job_logger)
        except asyncio.CancelledError:
            job_logger.warning("Job cancelled during shutdown, releasing")
            await self.store.release(job.id, SHUTDOWN_REASON, self.worker_id)
            raise
        except Exception:
            # Outcome could not be recorded; the lease expires and the job is reclaimed
            job_logger.exception("Failed to record job outcome")

    async def _execute(self, job: Job, job_logger) -> JobResult:
        job_logger.info("Processing job started")
        try:
            async with self.session_factory() as session:
                return await self.registry.dispatch(session, job)
        except Exception as e:
            return JobResult.failure(f"{e.__class__.__name__}: {e}", retryable=True)

    async def _record(self, job: Job, result: JobResult, job_logger) -> None:
        if result.ok:
            await self.store.mark_done(job.id, self.worker_id)
            job_logger.info("Processing job completed successfully", result=result.data)
            return

        if not result.retryable:
            job_logger.error("Job failed permanently", error=result.error)
            await self.store.mark_failed(job.id, result.error or "", self.worker_id)
            return

        delay_s = self.backoff(job.attempts)
        job_logger.warning(
            "Job attempt failed", error=result.error, backoff_s=round(delay_s, 3)
        )
        await self.store.mark_retry(
            job.id, result.error or "", delay_s, self.worker_id
        )

    async def _wait_for_stop(self, timeout_s: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            pass

    def _settle(self) -> None:
        if not self.stopping:
            self.state = WorkerState.IDLE
