"""Job Commands - Inspect and manage the background job queue"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import BackOfficeClient, BackOfficeError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job queue commands")


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(
        None, "--status", "-s", help="Filter by status (pending, running, done, failed)"
    ),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    page: int = typer.Option(1, "--page", "-p", help="Page number"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Jobs per page"),
):
    """📋 List jobs, newest first"""
    base_url = config.get("api.base_url")
    limit = limit or int(config.get("display.jobs_per_page", 20))

    try:
        with BackOfficeClient(base_url) as client:
            data = client.list_jobs(
                status=status, job_type=job_type, page=page, limit=limit
            )
    except BackOfficeError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    total = data.get("pagination", {}).get("total", len(jobs))

    if not jobs:
        console.print(Panel(
            "📭 [yellow]No jobs found![/yellow]\n\n"
            f"Filters applied:\n"
            f"• Status: {status or 'any'}\n"
            f"• Type: {job_type or 'any'}",
            title="Empty Results",
            border_style="yellow",
        ))
        return

    console.print(create_jobs_table(jobs))
    console.print(
        f"\n📊 Page [cyan]{page}[/cyan]: showing [cyan]{len(jobs)}[/cyan] of "
        f"[yellow]{total}[/yellow] jobs"
    )
    if page * limit < total:
        console.print(f"💡 Use [cyan]--page {page + 1}[/cyan] to see more")


@app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Job ID to show"),
):
    """🔍 Show a job, including its payload and last error"""
    base_url = config.get("api.base_url")

    try:
        with BackOfficeClient(base_url) as client:
            job = client.get_job(job_id)
    except BackOfficeError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))
    console.print(Panel(
        json.dumps(job.get("payload", {}), indent=2, sort_keys=True),
        title="Payload",
        border_style="cyan",
    ))
    if job.get("last_error"):
        console.print(Panel(job["last_error"], title="Last Error", border_style="red"))


@app.command("retry")
def retry_job(
    job_id: str = typer.Argument(..., help="ID of the failed job to re-queue"),
):
    """🔄 Re-queue a failed job with a fresh retry budget"""
    base_url = config.get("api.base_url")

    try:
        with BackOfficeClient(base_url) as client:
            job = client.retry_job(job_id)
    except BackOfficeError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job.get('id', job_id)} re-queued ({job.get('status', 'PENDING')})")


@app.command("enqueue")
def enqueue_job(
    job_type: str = typer.Argument(..., help="Job type, e.g. sync_customer"),
    payload: str = typer.Option("{}", "--payload", "-d", help="JSON payload"),
    run_after: str | None = typer.Option(
        None, "--run-after", help="ISO timestamp before which the job must not run"
    ),
):
    """➕ Enqueue a job by hand"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(payload_data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    base_url = config.get("api.base_url")
    try:
        with BackOfficeClient(base_url) as client:
            result = client.enqueue_job(job_type, payload_data, run_after)
    except BackOfficeError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    if result.get("deduplicated"):
        print_warning("An identical job is already pending; nothing enqueued")
    else:
        print_success(f"Enqueued {job_type} job {result.get('job_id')}")


@app.command("stats")
def show_stats():
    """📊 Show queue statistics"""
    base_url = config.get("api.base_url")

    try:
        with BackOfficeClient(base_url) as client:
            print_info("Fetching queue statistics...")
            stats = client.get_job_stats()
    except BackOfficeError as e:
        print_error(f"Failed to get statistics: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(stats))
