"""
Manages a Rich progress display for a batch of image loads.
"""

from PIL import Image
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)


class ProgressManager:
    """Tracks how many requests of a fetch session have settled."""

    def __init__(self, console: Console, total: int):
        self.console = console
        self.total = total
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            MofNCompleteColumn(),
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        self._task_id: TaskID | None = None

    def record_image(self, identifier: str, image: Image.Image) -> None:
        """Prints a line for a delivered image."""
        width, height = image.size
        self.progress.console.print(
            f"  [green]✓[/green] {escape(identifier)} "
            f"[dim]({width}x{height} {image.format or image.mode})[/dim]"
        )

    def advance(self) -> None:
        if self._task_id is not None:
            self.progress.advance(self._task_id)

    async def __aenter__(self):
        self.progress.start()
        self._task_id = self.progress.add_task("Loading images", total=self.total)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()
