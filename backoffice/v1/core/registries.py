import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.v1.infra.jobs.errors import ConfigurationError, NonRetryableJobError
from backoffice.v1.infra.jobs.models import Job

logger = logging.getLogger(__name__)

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def has(self, name: str) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def handle(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Handle a background job.

        Args:
            session: Database session scoped to this job execution
            payload: Job-specific parameters

        Returns:
            Optional result dictionary describing what was done
        """
        ...


@dataclass
class JobResult:
    """Outcome of one job execution."""

    ok: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    retryable: bool = field(default=False)

    @classmethod
    def success(cls, data: dict[str, Any] | None = None) -> "JobResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str, retryable: bool) -> "JobResult":
        return cls(ok=False, error=error, retryable=retryable)


class JobHandlerRegistry(Registry[JobHandler]):
    """Registry for background job handlers."""

    def __init__(self):
        super().__init__("Job")

    def ensure_registered(self, job_types: Iterable[str]) -> None:
        """Fail startup if any known job type has no handler."""
        missing = sorted(
            str(getattr(job_type, "value", job_type))
            for job_type in job_types
            if not self.has(getattr(job_type, "value", job_type))
        )
        if missing:
            raise ConfigurationError(
                f"No job handler registered for: {', '.join(missing)}"
            )

    async def dispatch(self, session: AsyncSession, job: Job) -> JobResult:
        """
        Run the handler for ``job`` inside ``session``.

        Commits on success and rolls back on failure. Never raises: every
        outcome, including an unregistered job type, is reported as a
        ``JobResult``.
        """
        if not self.has(job.job_type):
            logger.error(
                "No handler registered for job type",
                extra={"job_id": str(job.id), "job_type": job.job_type},
            )
            return JobResult.failure(
                f"Unknown job type: {job.job_type}", retryable=False
            )

        handler = self.get(job.job_type)
        try:
            data = await handler.handle(session, dict(job.payload or {}))
            await session.commit()
        except NonRetryableJobError as e:
            await session.rollback()
            return JobResult.failure(_describe(e), retryable=False)
        except Exception as e:
            await session.rollback()
            return JobResult.failure(_describe(e), retryable=True)

        return JobResult.success(data)


def _describe(error: Exception) -> str:
    message = str(error)
    return f"{error.__class__.__name__}: {message}" if message else error.__class__.__name__
