import asyncio
from datetime import timedelta
from typing import Any

import pytest

from backoffice.infra.database import utcnow
from backoffice.v1.core.registries import JobHandlerRegistry
from backoffice.v1.infra.jobs.errors import InvalidPayloadError, JobError
from backoffice.v1.infra.jobs.models import JobStatus
from backoffice.v1.infra.jobs.worker import SHUTDOWN_REASON, JobWorker, WorkerState


class RecordingHandler:
    """Succeeds after ``failures`` retryable failures."""

    def __init__(self, failures: int = 0, error: Exception | None = None):
        self.failures = failures
        self.error = error or JobError("temporary outage")
        self.calls: list[dict[str, Any]] = []

    async def handle(self, session, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(payload)
        if len(self.calls) <= self.failures:
            raise self.error
        return {"status": "completed"}


class GatedHandler:
    """Blocks each call until ``gate`` is set."""

    def __init__(self):
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        self.calls = 0
        self.completed = 0

    async def handle(self, session, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls += 1
        self.started.set()
        await self.gate.wait()
        self.completed += 1
        return {"status": "completed"}


class BrokenStore:
    async def claim(self, worker_id, batch_size, lease_ttl_s):
        raise RuntimeError("database unavailable")


def make_registry(**handlers) -> JobHandlerRegistry:
    registry = JobHandlerRegistry()
    for job_type, handler in handlers.items():
        registry.register(job_type, handler)
    registry.freeze()
    return registry


@pytest.fixture
def make_worker(job_store, session_factory, test_settings):
    def _make(registry, store=None, backoff=None, **overrides):
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        return JobWorker(
            store or job_store,
            registry,
            session_factory,
            settings,
            worker_id="worker-test",
            backoff=backoff,
        )

    return _make


async def wait_for_status(job_store, job_id, status: JobStatus, timeout: float = 5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        job = await job_store.get_job(job_id)
        if job.status == status.value:
            return job
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"Job {job_id} stuck in {job.status}, expected {status.value}")
        await asyncio.sleep(0.02)


class TestRunOnce:
    async def test_successful_job_marked_done(self, job_store, make_worker):
        handler = RecordingHandler()
        worker = make_worker(make_registry(sync_customer=handler))
        job = await job_store.enqueue("sync_customer", {"customer_id": "c1"})

        claimed = await worker.run_once()

        assert claimed == 1
        assert handler.calls == [{"customer_id": "c1"}]
        done = await job_store.get_job(job.id)
        assert done.status == JobStatus.DONE.value
        assert done.attempts == 1
        assert worker.state == WorkerState.IDLE

    async def test_empty_queue(self, make_worker):
        worker = make_worker(make_registry(sync_customer=RecordingHandler()))

        assert await worker.run_once() == 0
        assert worker.state == WorkerState.IDLE

    async def test_retryable_failure_is_rescheduled(self, job_store, make_worker):
        """Test that a transient failure goes back to PENDING with backoff."""
        worker = make_worker(make_registry(sync_customer=RecordingHandler(failures=1)))
        job = await job_store.enqueue("sync_customer", {"customer_id": "c1"})
        before = utcnow()

        await worker.run_once()

        retried = await job_store.get_job(job.id)
        assert retried.status == JobStatus.PENDING.value
        assert retried.attempts == 1
        assert retried.last_error == "JobError: temporary outage"
        # job_backoff_base_ms is 1000 with no jitter
        assert retried.run_after >= before + timedelta(milliseconds=900)

    async def test_success_after_retries(self, job_store, make_worker):
        handler = RecordingHandler(failures=2)
        worker = make_worker(make_registry(sync_customer=handler), backoff=lambda attempts: 0)
        job = await job_store.enqueue("sync_customer", {"customer_id": "c1"})

        for _ in range(3):
            await worker.run_once()

        done = await job_store.get_job(job.id)
        assert done.status == JobStatus.DONE.value
        assert done.attempts == 3
        assert len(handler.calls) == 3

    async def test_exhausted_job_is_dead_lettered(self, job_store, make_worker):
        """Test that a job that keeps failing stops at max attempts."""
        handler = RecordingHandler(failures=99)
        worker = make_worker(make_registry(sync_customer=handler), backoff=lambda attempts: 0)
        job = await job_store.enqueue("sync_customer", {"customer_id": "c1"})

        for _ in range(5):
            await worker.run_once()

        failed = await job_store.get_job(job.id)
        assert failed.status == JobStatus.FAILED.value
        assert failed.attempts == job_store.max_attempts
        assert len(handler.calls) == job_store.max_attempts

    async def test_non_retryable_failure_fails_immediately(self, job_store, make_worker):
        handler = RecordingHandler(failures=1, error=InvalidPayloadError("realm_id is required"))
        worker = make_worker(make_registry(sync_customer=handler))
        job = await job_store.enqueue("sync_customer", {})

        await worker.run_once()

        failed = await job_store.get_job(job.id)
        assert failed.status == JobStatus.FAILED.value
        assert failed.attempts == 1
        assert failed.last_error == "InvalidPayloadError: realm_id is required"

    async def test_unknown_job_type_fails(self, job_store, make_worker):
        worker = make_worker(make_registry(sync_customer=RecordingHandler()))
        job = await job_store.enqueue("retired_job_type", {"x": 1})

        await worker.run_once()

        failed = await job_store.get_job(job.id)
        assert failed.status == JobStatus.FAILED.value
        assert failed.last_error == "Unknown job type: retired_job_type"

    async def test_failures_are_isolated_within_batch(self, job_store, make_worker):
        """Test that one failing job does not affect the rest of the batch."""
        worker = make_worker(
            make_registry(
                sync_customer=RecordingHandler(),
                sync_project=RecordingHandler(failures=99, error=RuntimeError("boom")),
            ),
            worker_concurrency=2,
        )
        good = await job_store.enqueue("sync_customer", {"customer_id": "c1"})
        bad = await job_store.enqueue("sync_project", {"project_id": "p1"})
        also_good = await job_store.enqueue("sync_customer", {"customer_id": "c2"})

        assert await worker.run_once() == 3

        assert (await job_store.get_job(good.id)).status == JobStatus.DONE.value
        assert (await job_store.get_job(also_good.id)).status == JobStatus.DONE.value
        failed_attempt = await job_store.get_job(bad.id)
        assert failed_attempt.status == JobStatus.PENDING.value
        assert failed_attempt.last_error == "RuntimeError: boom"

    async def test_claim_error_does_not_crash(self, make_worker):
        worker = make_worker(make_registry(), store=BrokenStore())

        assert await worker.run_once() == 0
        assert worker.state == WorkerState.IDLE


class TestRunLoop:
    async def test_run_processes_until_stopped(self, job_store, make_worker):
        worker = make_worker(make_registry(sync_customer=RecordingHandler()))
        job = await job_store.enqueue("sync_customer", {"customer_id": "c1"})

        task = asyncio.create_task(worker.run())
        await wait_for_status(job_store, job.id, JobStatus.DONE)
        worker.request_stop()
        await asyncio.wait_for(task, timeout=5)

        assert worker.state == WorkerState.STOPPED

    async def test_stop_before_run(self, make_worker):
        worker = make_worker(make_registry())
        worker.request_stop()

        await asyncio.wait_for(worker.run(), timeout=5)

        assert worker.stopping
        assert worker.state == WorkerState.STOPPED
        assert await worker.run_once() == 0

    async def test_run_rejects_second_start(self, make_worker):
        worker = make_worker(make_registry())
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.01)

        with pytest.raises(RuntimeError, match="already running"):
            await worker.run()

        worker.request_stop()
        await asyncio.wait_for(task, timeout=5)


class TestGracefulShutdown:
    async def test_in_flight_job_finishes_within_grace(self, job_store, make_worker):
        handler = GatedHandler()
        worker = make_worker(make_registry(sync_customer=handler), worker_shutdown_grace_s=5.0)
        job = await job_store.enqueue("sync_customer", {"customer_id": "c1"})

        task = asyncio.create_task(worker.run())
        await asyncio.wait_for(handler.started.wait(), timeout=5)

        worker.request_stop()
        assert worker.state == WorkerState.SHUTTING_DOWN
        handler.gate.set()
        await asyncio.wait_for(task, timeout=5)

        assert (await job_store.get_job(job.id)).status == JobStatus.DONE.value

    async def test_job_cancelled_after_grace_is_released(self, job_store, make_worker):
        """Test that a job still running after the grace period goes back to the queue."""
        handler = GatedHandler()
        worker = make_worker(make_registry(sync_customer=handler), worker_shutdown_grace_s=0.1)
        job = await job_store.enqueue("sync_customer", {"customer_id": "c1"})

        task = asyncio.create_task(worker.run())
        await asyncio.wait_for(handler.started.wait(), timeout=5)

        worker.request_stop()
        await asyncio.wait_for(task, timeout=5)

        released = await job_store.get_job(job.id)
        assert handler.completed == 0
        assert released.status == JobStatus.PENDING.value
        assert released.attempts == 1
        assert released.locked_by is None
        assert released.last_error == SHUTDOWN_REASON

        # Immediately claimable by another worker
        assert [j.id for j in await job_store.claim("worker-next", 10, 300)] == [job.id]

    async def test_unstarted_jobs_released_on_shutdown(self, job_store, make_worker):
        """Test that claimed jobs not yet started go back without spending an attempt."""
        handler = GatedHandler()
        worker = make_worker(
            make_registry(sync_customer=handler),
            worker_concurrency=1,
            worker_shutdown_grace_s=5.0,
        )
        first = await job_store.enqueue("sync_customer", {"customer_id": "c1"})
        second = await job_store.enqueue("sync_customer", {"customer_id": "c2"})

        task = asyncio.create_task(worker.run())
        await asyncio.wait_for(handler.started.wait(), timeout=5)

        worker.request_stop()
        handler.gate.set()
        await asyncio.wait_for(task, timeout=5)

        assert handler.calls == 1
        assert (await job_store.get_job(first.id)).status == JobStatus.DONE.value
        released = await job_store.get_job(second.id)
        assert released.status == JobStatus.PENDING.value
        assert released.attempts == 0
        assert released.last_error == SHUTDOWN_REASON
