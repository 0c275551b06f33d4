from uuid import uuid4

from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from backoffice.v1.infra.jobs.models import JobStatus
from backoffice.v1.infra.jobs.routes import get_job_store


async def enqueue(client: AsyncClient, job_type="sync_customer", payload=None):
    return await client.post(
        "/v1/admin/jobs",
        json={"job_type": job_type, "payload": payload or {"customer_id": "c1"}},
    )


class TestEnqueueEndpoint:
    async def test_enqueue_job(self, async_client: AsyncClient):
        response = await enqueue(async_client)

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["data"]["deduplicated"] is False
        assert data["data"]["status"] == "PENDING"
        assert data["data"]["job_id"]

    async def test_duplicate_is_reported(self, async_client: AsyncClient):
        await enqueue(async_client)
        response = await enqueue(async_client)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data == {"job_id": None, "status": None, "deduplicated": True}

    async def test_unknown_job_type_rejected(self, async_client: AsyncClient):
        response = await enqueue(async_client, job_type="launch_rockets")

        assert response.status_code == 422
        data = response.json()
        assert data["ok"] is False
        assert "Unknown job type" in data["error"]["message"]
        assert "sync_customer" in data["error"]["details"]["allowed"]

    async def test_missing_job_type_rejected(self, async_client: AsyncClient):
        response = await async_client.post("/v1/admin/jobs", json={"payload": {}})
        assert response.status_code == 422


class TestJobQueries:
    async def test_list_jobs(self, async_client: AsyncClient):
        await enqueue(async_client, payload={"customer_id": "c1"})
        await enqueue(async_client, payload={"customer_id": "c2"})
        await enqueue(async_client, job_type="sync_project", payload={"project_id": "p1"})

        response = await async_client.get(
            "/v1/admin/jobs", params={"job_type": "sync_customer", "limit": 1}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["jobs"]) == 1
        assert data["jobs"][0]["job_type"] == "sync_customer"
        assert data["pagination"] == {"page": 1, "limit": 1, "total": 2}

    async def test_list_filters_by_status(self, async_client: AsyncClient, job_store):
        await enqueue(async_client)
        await job_store.claim("worker-a", 10, 300)
        await enqueue(async_client, payload={"customer_id": "c2"})

        response = await async_client.get("/v1/admin/jobs", params={"status": "RUNNING"})

        jobs = response.json()["data"]["jobs"]
        assert [job["status"] for job in jobs] == [JobStatus.RUNNING.value]
        assert jobs[0]["locked_by"] == "worker-a"

    async def test_list_rejects_bad_status(self, async_client: AsyncClient):
        response = await async_client.get("/v1/admin/jobs", params={"status": "SLEEPING"})
        assert response.status_code == 422

    async def test_list_limit_capped(self, async_client: AsyncClient):
        response = await async_client.get("/v1/admin/jobs", params={"limit": 501})
        assert response.status_code == 422

    async def test_get_job(self, async_client: AsyncClient):
        job_id = (await enqueue(async_client)).json()["data"]["job_id"]

        response = await async_client.get(f"/v1/admin/jobs/{job_id}")

        assert response.status_code == 200
        job = response.json()["data"]
        assert job["id"] == job_id
        assert job["payload"] == {"customer_id": "c1"}
        assert job["attempts"] == 0

    async def test_get_missing_job(self, async_client: AsyncClient):
        response = await async_client.get(f"/v1/admin/jobs/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Job not found"

    async def test_stats(self, async_client: AsyncClient):
        await enqueue(async_client, payload={"customer_id": "c1"})
        await enqueue(async_client, job_type="sync_project", payload={"project_id": "p1"})

        response = await async_client.get("/v1/admin/jobs/stats/overview")

        assert response.status_code == 200
        stats = response.json()["data"]
        assert stats["total_jobs"] == 2
        assert stats["by_status"] == {"PENDING": 2}
        assert stats["by_type"] == {"sync_customer": 1, "sync_project": 1}
        assert stats["queue_depth"] == 2


class TestRetryEndpoint:
    async def test_retry_failed_job(self, async_client: AsyncClient, job_store):
        job_id = (await enqueue(async_client)).json()["data"]["job_id"]
        [claimed] = await job_store.claim("worker-a", 10, 300)
        await job_store.mark_failed(claimed.id, "boom", "worker-a")

        response = await async_client.post(f"/v1/admin/jobs/{job_id}/retry")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Job re-queued"
        assert data["data"]["status"] == "PENDING"
        assert data["data"]["attempts"] == 0
        assert data["data"]["last_error"] is None

    async def test_retry_pending_job_rejected(self, async_client: AsyncClient):
        job_id = (await enqueue(async_client)).json()["data"]["job_id"]

        response = await async_client.post(f"/v1/admin/jobs/{job_id}/retry")

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["message"] == "Only failed jobs can be retried"
        assert error["details"]["status"] == "PENDING"

    async def test_retry_missing_job(self, async_client: AsyncClient):
        response = await async_client.post(f"/v1/admin/jobs/{uuid4()}/retry")
        assert response.status_code == 404


class UnavailableStore:
    async def list_jobs(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, ConnectionRefusedError("connection refused"))


class TestErrorEnvelopes:
    async def test_request_validation_uses_envelope(self, async_client: AsyncClient):
        response = await async_client.get("/v1/admin/jobs", params={"page": 0})

        assert response.status_code == 422
        data = response.json()
        assert data["ok"] is False
        assert data["error"]["message"] == "Request validation failed"
        assert data["error"]["details"]["errors"][0]["loc"] == ["query", "page"]
        assert data["request_id"] == response.headers["X-Request-ID"]

    async def test_caller_request_id_is_kept(self, async_client: AsyncClient):
        response = await async_client.get(
            f"/v1/admin/jobs/{uuid4()}", headers={"X-Request-ID": "req-42"}
        )

        assert response.headers["X-Request-ID"] == "req-42"
        assert response.json()["request_id"] == "req-42"

    async def test_database_outage_is_503(self, app, async_client: AsyncClient):
        app.dependency_overrides[get_job_store] = UnavailableStore

        response = await async_client.get("/v1/admin/jobs")

        assert response.status_code == 503
        assert response.json()["error"]["message"] == "Job store unavailable"
