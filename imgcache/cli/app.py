"""
Defines the command-line interface for the application using Typer.
Supports reading image URLs from stdin.
"""

import asyncio
import logging
import os
import sys
import time
from pathlib import Path

import typer
from PIL import Image
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from imgcache import __version__
from imgcache.core import FetchPipeline
from imgcache.exceptions import ImgCacheError
from imgcache.jobs import CleanupScheduler
from imgcache.media import Downloader
from imgcache.media.downloader import close_connection_pool
from imgcache.models.config import CacheConfig
from imgcache.storage import CacheStore, ConfigManager, JobStore
from imgcache.utils.path import create_dir, output_filename
from imgcache.utils.structured_logger import create_job_logger

from .formatters import (
    print_config,
    print_jobs_table,
    print_purge_results,
    print_summary_panel,
    print_validation_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("imgcache")

app = typer.Typer(
    name="imgcache",
    help=(
        "Fetch images through a TTL-based disk cache and keep the cache in check"
        " with scheduled cleanups. Use 'imgcache <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "imgcache"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(cli_options: dict | None = None) -> CacheConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _open_cache(config: CacheConfig) -> CacheStore:
    """Provisions the cache directory and opens the store on it."""
    create_dir(config.cache_path)
    return CacheStore(config.cache_path)


def _build_scheduler(config: CacheConfig) -> CleanupScheduler:
    _, job_logger = create_job_logger(
        log_dir=config.log_dir, enable_json=config.json_logs
    )
    return CleanupScheduler(
        JobStore(config.job_db_path),
        poll_seconds=config.poll_seconds,
        job_logger=job_logger,
    )


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
    clear_cache: bool = typer.Option(
        False, "--clear-cache", help="Delete every cached image right now and exit."
    ),
):
    """imgcache: cached image fetching"""
    if version:
        console.print(f"[bold]imgcache[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("imgcache").setLevel(log_level)

    if clear_cache:
        cache = _open_cache(_load_config())
        console.print("[cyan]Clearing image cache...[/cyan]")
        files_count = len(cache.entries())
        if cache.clear():
            console.print(
                f"[green]✓ Cache cleared successfully ({files_count} entries removed"
                ").[/green]"
            )
        else:
            console.print("[red]✗ Failed to clear cache.[/red]")
        raise typer.Exit()

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]imgcache init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        print_config(CONFIG_FILE, ConfigManager(CONFIG_FILE).read_raw())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    cache_dir: Path | None = typer.Option(  # noqa: B008
        None, "--cache-dir", help="Directory holding cached images."
    ),
    ttl: float | None = typer.Option(
        None, "--ttl", help="Minutes a cached image stays fresh (default 5)."
    ),
    interval: float | None = typer.Option(
        None,
        "--interval",
        help="Minutes between periodic cleanups (minimum and default 15).",
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration."
    ),
):
    """Create the configuration file and the cache directory."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        key: value
        for key, value in {
            "cache_dir": str(cache_dir.expanduser().resolve()) if cache_dir else None,
            "ttl_minutes": ttl,
            "cleanup_interval_minutes": interval,
        }.items()
        if value is not None
    }
    try:
        config = CacheConfig(**settings, config_path=str(CONFIG_DIR))
        ConfigManager(CONFIG_FILE).save_new_config(settings)
        create_dir(config.cache_path)
    except (ImgCacheError, ValueError) as e:
        console.print(f"[red]✗ Could not initialize: {e}[/red]")
        raise typer.Exit(code=1) from e

    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print(f"[green]✓ Cache directory ready at '{config.cache_path}'[/green]")
    console.print("Try: [cyan]imgcache fetch <URL>[/cyan]")


def _read_urls_from_stdin() -> list[str]:
    """Reads URLs from stdin, one per line."""
    if sys.stdin.isatty():
        console.print(
            "[yellow]⚠️  No input detected on stdin. Please pipe URLs or redirect"
            " a file.[/yellow]"
        )
        raise typer.Exit(code=1)

    urls = []
    for line in sys.stdin:
        line = line.strip()
        if line and not line.startswith("#"):
            urls.append(line)

    if not urls:
        console.print("[yellow]⚠️  No valid URLs found in stdin.[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Read {len(urls)} URLs from stdin.[/green]")
    return urls


def _save_images(images: dict[str, Image.Image], save_dir: Path) -> int:
    create_dir(save_dir)
    saved = 0
    for identifier, image in images.items():
        target = save_dir / output_filename(identifier)
        try:
            image.convert("RGB").save(target, format="JPEG", quality=95)
            saved += 1
        except OSError as e:
            log.warning(f"Could not save '{target}': {e}")
    return saved


@app.command(name="fetch")
def fetch_command(
    urls: list[str] | None = typer.Argument(  # noqa: B008
        None, help="One or more image URLs."
    ),
    ttl: float | None = typer.Option(
        None, "--ttl", help="Override the cache TTL in minutes."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Number of I/O workers and connections."
    ),
    save_dir: Path | None = typer.Option(  # noqa: B008
        None, "--save-dir", help="Also save every delivered image to this directory."
    ),
    schedule: bool = typer.Option(
        True,
        "--schedule/--no-schedule",
        help="Register the periodic cleanup and run due jobs while fetching.",
    ),
    stdin: bool = typer.Option(
        False, "--stdin", help="Read URLs from standard input, one URL per line."
    ),
):
    """Load images through the cache."""
    if stdin:
        urls = _read_urls_from_stdin()
    elif not urls:
        console.print(
            "[red]✗ No URLs provided.[/red] "
            "Use: [cyan]imgcache fetch <URL>[/cyan] or [cyan]--stdin[/cyan]"
        )
        raise typer.Exit(code=1)

    cli_options = {
        key: value
        for key, value in {"ttl_minutes": ttl, "max_workers": workers}.items()
        if value is not None
    }
    unique_urls = list(dict.fromkeys(urls))

    async def _fetch_async():
        config = _load_config(cli_options)
        cache = _open_cache(config)
        scheduler = _build_scheduler(config) if schedule else None
        downloader = Downloader(
            max_attempts=config.download_attempts,
            max_workers=config.max_workers,
            user_agent=config.user_agent,
        )
        delivered: dict[str, Image.Image] = {}
        start_time = time.monotonic()

        pipeline = FetchPipeline(
            cache,
            config.ttl,
            downloader=downloader,
            io_workers=config.max_workers,
            decode_workers=config.decode_workers,
        )
        try:
            if scheduler:
                await scheduler.register_periodic(config.cleanup_interval, cache.cache_dir)
                await scheduler.start()

            async with ProgressManager(console, total=len(unique_urls)) as progress:

                def on_image(image: Image.Image, url: str) -> None:
                    delivered[url] = image
                    progress.record_image(url, image)

                handles = [
                    pipeline.load(url, lambda image, url=url: on_image(image, url))
                    for url in unique_urls
                ]
                for handle in handles:
                    await handle.wait()
                    progress.advance()
        finally:
            await pipeline.close()
            if scheduler:
                await scheduler.stop()
            await close_connection_pool()

        for url in unique_urls:
            if url not in delivered:
                console.print(f"  [red]✗[/red] {escape(url)}")

        if save_dir and delivered:
            saved = await asyncio.to_thread(_save_images, delivered, save_dir)
            console.print(f"[green]✓ Saved {saved} image(s) to '{save_dir}'.[/green]")

        print_summary_panel(pipeline.stats, time.monotonic() - start_time)
        if pipeline.stats.delivered < len(unique_urls):
            raise typer.Exit(code=1)

    asyncio.run(_fetch_async())


@app.command()
def cleanup(
    wait: bool = typer.Option(
        False, "--wait", help="Run due cleanup jobs now instead of leaving them queued."
    ),
):
    """Enqueue a one-time purge of the cache directory."""

    async def _cleanup_async():
        config = _load_config()
        cache = _open_cache(config)
        scheduler = _build_scheduler(config)
        job_id = await scheduler.trigger_once(cache.cache_dir)
        console.print(f"[green]✓ Cleanup job {job_id} enqueued.[/green]")
        if wait:
            print_purge_results(await scheduler.run_pending())
        else:
            console.print(
                "[dim]It will run on the next tick of [cyan]imgcache worker[/cyan]"
                " or [cyan]imgcache fetch[/cyan].[/dim]"
            )

    asyncio.run(_cleanup_async())


@app.command()
def schedule(
    interval: float | None = typer.Option(
        None, "--interval", help="Minutes between cleanups (minimum 15)."
    ),
):
    """Register the periodic purge of the cache directory."""

    async def _schedule_async():
        config = _load_config()
        cache = _open_cache(config)
        scheduler = _build_scheduler(config)
        minutes = interval if interval is not None else config.cleanup_interval_minutes
        existing = await scheduler.find_periodic(cache.cache_dir)
        job_id = await scheduler.register_periodic(minutes * 60, cache.cache_dir)
        if existing is not None:
            console.print(
                f"[yellow]A periodic cleanup (job {job_id}) is already registered "
                "for this directory; keeping it.[/yellow]"
            )
        else:
            console.print(f"[green]✓ Periodic cleanup registered (job {job_id}).[/green]")

    asyncio.run(_schedule_async())


@app.command()
def worker(
    register: bool = typer.Option(
        True,
        "--register/--no-register",
        help="Register the periodic cleanup before starting.",
    ),
):
    """Run cleanup jobs as they become due, until interrupted."""

    async def _worker_async():
        config = _load_config()
        cache = _open_cache(config)
        scheduler = _build_scheduler(config)
        if register:
            await scheduler.register_periodic(config.cleanup_interval, cache.cache_dir)
        await scheduler.start()
        console.print(
            f"[bold cyan]Cleanup worker running[/bold cyan] "
            f"[dim](polling every {config.poll_seconds:g}s, Ctrl+C to stop)[/dim]"
        )
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()

    asyncio.run(_worker_async())


@app.command()
def jobs():
    """Show the cleanup jobs and their status."""

    async def _jobs_async():
        config = _load_config()
        scheduler = _build_scheduler(config)
        print_jobs_table(await scheduler.list_jobs())

    asyncio.run(_jobs_async())


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        print_validation_table(_load_config())
    except ImgCacheError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e
