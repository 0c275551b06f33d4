"""
Worker process entry point (``backoffice-worker``).

Wires settings, logging, database, QuickBooks client, handler registry and
worker together, then runs until SIGINT or SIGTERM.
"""

import asyncio
import signal

import httpx
import typer
from rich.console import Console

from backoffice.config.logging import bind_worker_context, get_logger, setup_logging
from backoffice.config.settings import Settings, get_settings
from backoffice.infra.database import Database
from backoffice.v1.infra.jobs.errors import ConfigurationError
from backoffice.v1.infra.jobs.registry_init import build_job_registry
from backoffice.v1.infra.jobs.store import JobStore
from backoffice.v1.infra.jobs.worker import JobWorker
from backoffice.v1.quickbooks.client import QuickBooksClient

logger = get_logger(__name__)
console = Console(stderr=True)

app = typer.Typer(
    name="backoffice-worker",
    help="Run the back office background job worker",
    add_completion=False,
)


def install_signal_handlers(worker: JobWorker) -> None:
    """Route SIGINT and SIGTERM to a graceful worker stop."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.request_stop)
        except NotImplementedError:
            # Event loops without signal support (Windows)
            signal.signal(
                sig, lambda *_: loop.call_soon_threadsafe(worker.request_stop)
            )


async def run_worker(
    settings: Settings, worker_id: str | None = None, once: bool = False
) -> None:
    database = Database(settings)
    try:
        async with httpx.AsyncClient(timeout=settings.qbo_http_timeout_s) as http_client:
            qbo_client = QuickBooksClient(settings, database.SessionLocal, http_client)
            registry = build_job_registry(qbo_client)
            store = JobStore(database.SessionLocal, settings.job_max_attempts)
            worker = JobWorker(
                store, registry, database.SessionLocal, settings, worker_id=worker_id
            )
            bind_worker_context(worker.worker_id)

            if once:
                claimed = await worker.run_once()
                logger.info("Single poll cycle finished", claimed=claimed)
                return

            install_signal_handlers(worker)
            await worker.run()
    finally:
        await database.close()


@app.command()
def run(
    worker_id: str | None = typer.Option(
        None, "--worker-id", help="Worker identity (defaults to WORKER_ID or host-pid)"
    ),
    once: bool = typer.Option(
        False, "--once", help="Run a single poll cycle and exit"
    ),
) -> None:
    """Start the job worker."""
    settings = get_settings()

    try:
        settings.require_worker_secrets()
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    setup_logging()

    try:
        asyncio.run(run_worker(settings, worker_id=worker_id, once=once))
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Invalid worker configuration: {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
