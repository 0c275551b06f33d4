"""Back Office CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import BackOfficeClient, BackOfficeError
from .commands import config, jobs
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

# Create main Typer app
app = typer.Typer(
    name="backoffice",
    help="🧾 Back Office - job queue operations CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API connectivity and queue health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with BackOfficeClient(base_url) as client:
            health = client.health_check()
    except BackOfficeError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Back Office API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]backoffice config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red",
        ))
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    database_ok = (health.get("database") or {}).get("connected", False)
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Database: {'[green]up[/green]' if database_ok else '[red]down[/red]'}\n"
        f"• Queue Depth: [yellow]{queue.get('queue_depth', 0)}[/yellow]\n"
        f"• Failed Jobs: [red]{queue.get('failed_jobs', 0)}[/red]\n"
        f"• Active Workers: [green]{queue.get('active_workers', 0)}[/green]\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green" if health.get("ok") else "red",
    ))


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(f"Back Office CLI v{__version__}")


if __name__ == "__main__":
    app()
