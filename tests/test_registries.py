from typing import Any
from uuid import uuid4

import pytest

from backoffice.v1.core.registries import JobHandlerRegistry, JobResult, Registry
from backoffice.v1.infra.jobs.errors import (
    ConfigurationError,
    InvalidPayloadError,
    JobError,
)
from backoffice.v1.infra.jobs.models import Job, JobStatus, JobType
from backoffice.v1.infra.jobs.registry_init import build_job_registry


class FakeSession:
    """Records commit and rollback calls made by the registry."""

    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


class EchoHandler:
    async def handle(self, session, payload: dict[str, Any]) -> dict[str, Any]:
        return {"echo": payload}


class RaisingHandler:
    def __init__(self, error: Exception):
        self.error = error

    async def handle(self, session, payload: dict[str, Any]) -> dict[str, Any]:
        raise self.error


def make_job(job_type: str, payload: dict[str, Any] | None = None) -> Job:
    return Job(
        id=uuid4(),
        job_type=job_type,
        payload=payload or {},
        status=JobStatus.RUNNING.value,
        attempts=1,
        dedupe_key="test",
    )


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    assert registry.list() == []

    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.has("test_impl")
    assert registry.list() == ["test_impl"]

    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_overwrites_implementation():
    """Test that registering the same name overwrites previous implementation."""
    registry = Registry[str]("Test")

    registry.register("same_name", "first_value")
    registry.register("same_name", "second_value")

    assert registry.get("same_name") == "second_value"
    assert registry.list() == ["same_name"]


def test_frozen_registry_rejects_registration():
    registry = Registry[str]("Test")
    registry.register("a", "1")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("b", "2")
    assert registry.get("a") == "1"


def test_ensure_registered_reports_missing_types():
    registry = JobHandlerRegistry()
    registry.register(JobType.SYNC_CUSTOMER.value, EchoHandler())

    with pytest.raises(ConfigurationError) as exc_info:
        registry.ensure_registered(JobType)

    message = str(exc_info.value)
    assert "post_time_entry_cost" in message
    assert "sync_project" in message
    assert "sync_customer" not in message


async def test_build_job_registry_covers_every_job_type(qbo_client):
    """Test that startup wiring registers a handler for each job type."""
    registry = build_job_registry(qbo_client)

    assert registry.is_frozen()
    assert set(registry.list()) == {job_type.value for job_type in JobType}


async def test_dispatch_success_commits():
    registry = JobHandlerRegistry()
    registry.register("echo", EchoHandler())
    session = FakeSession()

    result = await registry.dispatch(session, make_job("echo", {"x": 1}))

    assert result == JobResult.success({"echo": {"x": 1}})
    assert session.commits == 1
    assert session.rollbacks == 0


async def test_dispatch_unknown_type_is_not_retryable():
    registry = JobHandlerRegistry()
    session = FakeSession()

    result = await registry.dispatch(session, make_job("missing_type"))

    assert result.ok is False
    assert result.retryable is False
    assert result.error == "Unknown job type: missing_type"
    assert session.commits == 0


async def test_dispatch_non_retryable_error():
    """Test that payload errors dead-letter instead of retrying."""
    registry = JobHandlerRegistry()
    registry.register("bad", RaisingHandler(InvalidPayloadError("realm_id is required")))
    session = FakeSession()

    result = await registry.dispatch(session, make_job("bad"))

    assert result.ok is False
    assert result.retryable is False
    assert result.error == "InvalidPayloadError: realm_id is required"
    assert session.rollbacks == 1
    assert session.commits == 0


@pytest.mark.parametrize(
    "error",
    [JobError("Customer not found"), RuntimeError("boom"), ValueError("")],
)
async def test_dispatch_other_errors_are_retryable(error):
    registry = JobHandlerRegistry()
    registry.register("flaky", RaisingHandler(error))
    session = FakeSession()

    result = await registry.dispatch(session, make_job("flaky"))

    assert result.ok is False
    assert result.retryable is True
    assert result.error.startswith(error.__class__.__name__)
    assert session.rollbacks == 1
