"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from imgcache.jobs.purge_worker import PurgeResult
from imgcache.models.config import CacheConfig
from imgcache.models.job import JobKind, JobRecord, JobState
from imgcache.models.stats import FetchStats
from imgcache.utils.formatting import format_duration, format_size, format_timestamp


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your configuration file.",
            "• Run `imgcache init --force` to recreate it.",
            "• Make sure the cache directory exists and is writable.",
        ],
        "InvalidIntervalError": [
            "• Periodic cleanups must be at least 15 minutes apart.",
            "• Pass a larger value with `--interval`.",
        ],
        "OperationalError": [
            "• The job database could not be opened or is locked.",
            "• Make sure only one `imgcache worker` runs at a time.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• The image host might be temporarily unavailable.",
        ],
        "TimeoutError": [
            "• A download timed out, which may indicate network throttling.",
            "• Try reducing the number of `--workers`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration file contents."""
    console = Console()
    content = "\n".join(f"{key} = {value}" for key, value in config_data.items())
    console.print(
        Panel(
            content or "[dim](empty)[/dim]",
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: CacheConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Cache Directory:", f"[dim]{config.cache_path}[/dim]")
    table.add_row("Entry TTL:", format_duration(config.ttl.total_seconds()))
    table.add_row(
        "Cleanup Interval:", format_duration(config.cleanup_interval.total_seconds())
    )
    table.add_row("Max Workers:", str(config.max_workers))
    table.add_row("Decode Workers:", str(config.decode_workers))
    table.add_row("Download Attempts:", str(config.download_attempts))
    table.add_row("JSON Job Logs:", "✓ Enabled" if config.json_logs else "✗ Disabled")
    table.add_row("Job Database:", f"[dim]{config.job_db_path}[/dim]")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


_STATE_STYLES = {
    JobState.ENQUEUED: "cyan",
    JobState.RUNNING: "yellow",
    JobState.SUCCEEDED: "green",
    JobState.FAILED: "red",
}


def print_jobs_table(jobs: list[JobRecord]):
    """Displays the cleanup jobs stored in the job database."""
    console = Console()
    if not jobs:
        console.print("[dim]No cleanup jobs have been registered yet.[/dim]")
        return

    table = Table(title="Cleanup Jobs", box=box.SIMPLE_HEAVY)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Kind")
    table.add_column("State")
    table.add_column("Directory", style="cyan", overflow="fold")
    table.add_column("Next Due")
    table.add_column("Last Run")
    table.add_column("Attempts", justify="right")
    table.add_column("Last Error", style="red", overflow="fold")

    for job in jobs:
        style = _STATE_STYLES.get(job.state, "white")
        kind = "periodic" if job.kind is JobKind.PERIODIC else "one-time"
        if job.interval_seconds:
            kind += f" ({format_duration(job.interval_seconds)})"
        table.add_row(
            str(job.job_id),
            kind,
            f"[{style}]{job.state.value}[/{style}]",
            job.directory or "[red]<invalid payload>[/red]",
            "-" if job.is_terminal else format_timestamp(job.next_due),
            format_timestamp(job.last_run),
            str(job.attempts),
            job.last_error or "",
        )
    console.print(table)


def print_purge_results(outcomes: list[tuple[JobRecord, PurgeResult]]):
    """Displays the outcome of the jobs run in this process."""
    console = Console()
    if not outcomes:
        console.print("[dim]No cleanup jobs were due.[/dim]")
        return
    for job, result in outcomes:
        if result.success:
            console.print(
                f"[green]✓ Job {job.job_id}: removed {result.removed} entries "
                f"from [dim]{job.directory}[/dim][/green]"
            )
        else:
            console.print(
                f"[red]✗ Job {job.job_id} failed: {result.error} "
                f"({result.removed} entries removed)[/red]"
            )


def print_summary_panel(stats: FetchStats, duration_s: float):
    """Displays the final summary of a fetch session."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Delivered:", f"[bold green]{stats.delivered}[/bold green]")
    stats_table.add_row(
        "Cache:",
        f"[green]{stats.cache_hits} hits[/green] / "
        f"[yellow]{stats.cache_misses} misses[/yellow] "
        f"([cyan]{stats.hit_ratio:.0%}[/cyan])",
    )
    stats_table.add_row("Downloaded:", f"{stats.downloads}")
    stats_table.add_row("Cache Writes:", f"{stats.cache_writes}")

    if stats.download_failures > 0:
        stats_table.add_row(
            "✗ Download Failed:", f"[bold red]{stats.download_failures}[/bold red]"
        )
    if stats.decode_failures > 0:
        stats_table.add_row(
            "✗ Decode Failed:", f"[bold red]{stats.decode_failures}[/bold red]"
        )
    if stats.cancelled > 0:
        stats_table.add_row("○ Cancelled:", f"[yellow]{stats.cancelled}[/yellow]")

    stats_table.add_row("", "")  # Spacer
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.bytes_downloaded)}[/cyan]"
    )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    border_color = "green" if stats.failed == 0 else "yellow"
    console.print()
    console.print(
        Panel(
            stats_table,
            title="🖼  [bold]Fetch Complete[/bold]",
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
