"""Rich console output for the CLI."""

from __future__ import annotations

import threading
from types import TracebackType

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TaskProgressColumn, TextColumn
from rich.table import Table

from linglong_installer.emitter import InstallProgress, ProgressEventType
from linglong_installer.operations import InstalledApp


class TUI:
    """Text output helpers for non-interactive commands."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def show_apps(self, apps: list[InstalledApp], title: str = "Installed Applications") -> None:
        """Display installed packages table.

        Args:
            apps: Packages to show.
            title: Table title.
        """
        if not apps:
            self.console.print("[yellow]No applications installed[/yellow]")
            return

        table = Table(title=title)
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Version")
        table.add_column("Arch")
        table.add_column("Channel")
        table.add_column("Module")
        table.add_column("Kind")

        for app in apps:
            table.add_row(
                app.ident,
                app.name,
                app.version,
                app.arch,
                app.channel,
                app.module,
                app.kind or "",
            )

        self.console.print(table)

    def show_success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def show_error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def show_warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")


class ConsoleProgressSink:
    """Renders install notifications as a rich progress bar.

    Use as a context manager around the install so the live display is
    started and stopped cleanly.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console,
        )
        self._task: TaskID | None = None
        self._lock = threading.Lock()

    def __enter__(self) -> ConsoleProgressSink:
        self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._progress.stop()

    def publish(self, progress: InstallProgress) -> None:
        description = escape(f"{progress.app_id}: {progress.status}")
        with self._lock:
            if self._task is None:
                self._task = self._progress.add_task(description, total=100)

            if progress.event_type is ProgressEventType.ERROR:
                self._progress.console.print(f"[red]✗[/red] {escape(progress.status)}")
                if progress.error_detail and progress.error_detail != progress.status:
                    self._progress.console.print(f"  [dim]{escape(progress.error_detail)}[/dim]")
                self._progress.update(self._task, description=description)
            elif progress.event_type is ProgressEventType.CANCELLED:
                self._progress.console.print(f"[yellow]![/yellow] {escape(progress.status)}")
                self._progress.update(self._task, description=description)
            else:
                self._progress.update(
                    self._task, completed=progress.percentage, description=description
                )
