from typer.testing import CliRunner

from backoffice.config.settings import Settings
from backoffice.v1.infra.jobs import runner
from backoffice.v1.infra.jobs.models import JobStatus, JobType


def test_worker_refuses_to_start_without_secrets(monkeypatch):
    monkeypatch.setattr(
        runner,
        "get_settings",
        lambda: Settings(qbo_client_id=None, qbo_client_secret=None),
    )

    result = CliRunner().invoke(runner.app, ["--once"])

    assert result.exit_code == 1
    assert "QBO_CLIENT_ID" in result.output


async def test_run_worker_once_processes_queue(job_store, test_settings):
    job = await job_store.enqueue(
        JobType.POST_TIME_ENTRY_COST.value, {"time_entry_id": "not-a-uuid"}
    )

    await runner.run_worker(test_settings, worker_id="runner-test", once=True)

    stored = await job_store.get_job(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.attempts == 1
    assert "time_entry_id" in stored.last_error
