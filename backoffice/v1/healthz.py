from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.config.logging import get_logger
from backoffice.config.settings import Settings, SettingsDep
from backoffice.infra.database import get_session
from backoffice.v1.core.exceptions import create_success_response
from backoffice.v1.infra.jobs.routes import JobStoreDep
from backoffice.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue health status."""

    active_workers: int = 0
    stale_leases: int = 0
    queue_depth: int = 0
    failed_jobs: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
):
    """Health check with database and job queue status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)
    overall_ok = db_health.connected

    queue_health = None
    if db_health.connected:
        try:
            stats = await store.get_stats(settings.worker_lease_ttl_s)
            queue_health = QueueHealth(
                active_workers=stats.active_workers,
                stale_leases=stats.stale_leases,
                queue_depth=stats.queue_depth,
                failed_jobs=stats.by_status.get("FAILED", 0),
            )
        except Exception:
            # Queue stats are informational and do not fail the check
            logger.warning("Queue health check failed", exc_info=True)
            queue_health = QueueHealth()

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))
