"""API Endpoint Wrappers - Typed API calls"""

from typing import Any

import httpx

from ..utils.config_manager import config
from .base import APIClient, BackOfficeError

__all__ = ["BackOfficeClient", "BackOfficeError"]


class BackOfficeClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers") or {}

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Job Endpoints
    def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status.upper()
        if job_type:
            params["job_type"] = job_type
        return self.api.get("/admin/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/admin/jobs/{job_id}")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Re-queue a failed job"""
        return self.api.post(f"/admin/jobs/{job_id}/retry")

    def enqueue_job(
        self,
        job_type: str,
        payload: dict[str, Any],
        run_after: str | None = None,
    ) -> dict[str, Any]:
        """Enqueue a job"""
        data: dict[str, Any] = {"job_type": job_type, "payload": payload}
        if run_after:
            data["run_after"] = run_after
        return self.api.post("/admin/jobs", data)

    def get_job_stats(self) -> dict[str, Any]:
        """Get queue statistics"""
        return self.api.get("/admin/jobs/stats/overview")
