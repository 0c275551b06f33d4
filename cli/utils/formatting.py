"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "PENDING": "yellow",
    "RUNNING": "blue",
    "DONE": "green",
    "FAILED": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def format_status(status: str | None) -> str:
    style = STATUS_STYLES.get(status or "", "white")
    return f"[{style}]{status or '-'}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="right", style="yellow")
    table.add_column("Run After", justify="left", style="white")
    table.add_column("Last Error", justify="left", style="red")

    for job in jobs:
        error = job.get("last_error") or "-"
        table.add_row(
            str(job.get("id", ""))[:8],  # Short ID
            job.get("job_type", ""),
            format_status(job.get("status")),
            str(job.get("attempts", 0)),
            job.get("run_after") or "-",
            error[:60] + "..." if len(error) > 60 else error,
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create a detail panel for a single job"""
    content = f"""
🆔 [bold]ID:[/bold] [cyan]{job.get('id', 'unknown')}[/cyan]
📝 [bold]Type:[/bold] [magenta]{job.get('job_type', 'unknown')}[/magenta]
📊 [bold]Status:[/bold] {format_status(job.get('status'))}
🔁 [bold]Attempts:[/bold] [yellow]{job.get('attempts', 0)}[/yellow]
⏰ [bold]Run After:[/bold] {job.get('run_after') or '-'}
🔒 [bold]Locked By:[/bold] {job.get('locked_by') or '-'} ({job.get('locked_at') or 'not locked'})
📅 [bold]Created:[/bold] [blue]{job.get('created_at', 'unknown')}[/blue]
🕑 [bold]Updated:[/bold] [blue]{job.get('updated_at', 'unknown')}[/blue]
"""
    return Panel(content.strip(), title="Job Details", border_style="blue")


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    by_status = stats.get("by_status", {})
    by_type = stats.get("by_type", {})

    status_lines = "\n".join(
        f"• {format_status(status)}: {count}" for status, count in sorted(by_status.items())
    )
    type_lines = "\n".join(
        f"• [magenta]{job_type}[/magenta]: {count}"
        for job_type, count in sorted(by_type.items())
    )

    content = f"""
📊 [bold blue]Queue Statistics[/bold blue]

• Total Jobs: [cyan]{stats.get('total_jobs', 0)}[/cyan]
• Queue Depth: [yellow]{stats.get('queue_depth', 0)}[/yellow]
• Stale Leases: [red]{stats.get('stale_leases', 0)}[/red]
• Active Workers: [green]{stats.get('active_workers', 0)}[/green]

[bold]By Status:[/bold]
{status_lines or '• none'}

[bold]By Type:[/bold]
{type_lines or '• none'}
"""
    return Panel(content.strip(), title="Job Queue", border_style="green")
