"""CLI commands using Typer."""

from __future__ import annotations

import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING, Annotated

if TYPE_CHECKING:
    from linglong_installer.context import AppContext
    from linglong_installer.protocols import ProgressSink
    from linglong_installer.types import InstallOutcome

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from linglong_installer import __version__
from linglong_installer.config import SETTABLE_KEYS
from linglong_installer.console import TUI, ConsoleProgressSink
from linglong_installer.context import create_context
from linglong_installer.error_codes import status_from_code
from linglong_installer.exceptions import (
    ConfigError,
    InstallerError,
    NoActiveInstallError,
    OperationError,
)
from linglong_installer.sinks import JsonLinesSink
from linglong_installer.types import OutcomeStatus

app = typer.Typer(
    name="linglong-installer",
    help="Install and manage Linglong packages through ll-cli",
    no_args_is_help=True,
)

config_app = typer.Typer(help="Configuration commands")

app.add_typer(config_app, name="config")

console = Console()
tui = TUI(console)

# How often the foreground waits for the install worker before re-checking
_WAIT_SLICE_SECS = 0.2


def _get_context(context: AppContext | None, sink: ProgressSink | None = None) -> AppContext:
    """Return the injected context or build one, exiting on a broken config."""
    if context is not None:
        return context
    try:
        return create_context(sink=sink)
    except ConfigError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"linglong-installer v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log engine activity to stderr")
    ] = False,
) -> None:
    """Install and manage Linglong packages through ll-cli."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


# ============================================================================
# Install Commands
# ============================================================================


def _request_cancel(ctx: AppContext, app_id: str) -> None:
    """Forward Ctrl+C to the cancellation path."""
    try:
        tui.show_warning(ctx.canceller.cancel(app_id))
    except NoActiveInstallError as e:
        tui.show_warning(str(e))


def _run_install(
    ctx: AppContext, app_id: str, version: str | None, force: bool
) -> InstallOutcome:
    """Run the install on a worker thread, turning Ctrl+C into a cancellation.

    The foreground keeps waiting after a cancel so the installer can report
    the final outcome and release the slot.
    """
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="install") as pool:
        future = pool.submit(ctx.installer.install, app_id, version, force)
        while True:
            try:
                return future.result(timeout=_WAIT_SLICE_SECS)
            except FutureTimeoutError:
                continue
            except KeyboardInterrupt:
                _request_cancel(ctx, app_id)


def _report_outcome(outcome: InstallOutcome) -> None:
    """Print the outcome and exit non-zero unless it succeeded."""
    if outcome.status is OutcomeStatus.SUCCEEDED:
        tui.show_success(outcome.message)
        return

    if outcome.status is OutcomeStatus.CANCELLED:
        tui.show_warning(outcome.message)
    else:
        assert outcome.code is not None
        tui.show_error(f"{status_from_code(outcome.code)} ({outcome.message})")
        if outcome.detail:
            console.print(f"[dim]{escape(outcome.detail)}[/dim]")
    raise typer.Exit(1)


@app.command()
def install(
    app_id: Annotated[str, typer.Argument(help="Application id, e.g. org.deepin.calculator")],
    version: Annotated[
        str | None, typer.Option("--version", "-r", help="Version to install (latest if omitted)")
    ] = None,
    force: Annotated[bool, typer.Option("--force", "-f", help="Force the installation")] = False,
    json_output: Annotated[
        bool, typer.Option("--json", help="Print install-progress events as JSON lines")
    ] = False,
    _context=None,
) -> None:
    """Install an application, showing live progress."""
    if json_output:
        sink = JsonLinesSink()
        display = contextlib.nullcontext()
    else:
        sink = ConsoleProgressSink(console)
        display = sink if _context is None else contextlib.nullcontext()

    ctx = _get_context(_context, sink)

    try:
        with display:
            outcome = _run_install(ctx, app_id, version, force)
    except InstallerError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e

    if json_output:
        if not outcome.ok:
            raise typer.Exit(1)
        return
    _report_outcome(outcome)


# ============================================================================
# Package Commands
# ============================================================================


@app.command("list")
def list_apps(
    all_kinds: Annotated[
        bool, typer.Option("--all", "-a", help="Include runtimes and bases")
    ] = False,
    _context=None,
) -> None:
    """List installed applications."""
    ctx = _get_context(_context)
    try:
        apps = ctx.operations.list_installed(include_base_service=all_kinds)
    except OperationError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e
    tui.show_apps(apps)


@app.command()
def versions(
    app_id: Annotated[str, typer.Argument(help="Application id")],
    _context=None,
) -> None:
    """Show every installed version of an application."""
    ctx = _get_context(_context)
    try:
        apps = ctx.operations.search_versions(app_id)
    except OperationError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e
    tui.show_apps(apps, title=f"Installed versions of {app_id}")


@app.command()
def uninstall(
    app_id: Annotated[str, typer.Argument(help="Application id")],
    version: Annotated[str, typer.Argument(help="Version to remove")],
    _context=None,
) -> None:
    """Stop and uninstall one version of an application."""
    ctx = _get_context(_context)
    try:
        tui.show_success(ctx.operations.uninstall(app_id, version))
    except OperationError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e


@app.command()
def run(
    app_id: Annotated[str, typer.Argument(help="Application id")],
    _context=None,
) -> None:
    """Launch an application."""
    ctx = _get_context(_context)
    try:
        tui.show_success(ctx.operations.run_app(app_id))
    except OperationError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e


@app.command()
def kill(
    app_id: Annotated[str, typer.Argument(help="Application id")],
    _context=None,
) -> None:
    """Stop a running application."""
    ctx = _get_context(_context)
    try:
        tui.show_success(ctx.operations.kill_app(app_id))
    except OperationError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e


@app.command()
def prune(
    _context=None,
) -> None:
    """Remove runtimes and bases no application uses."""
    ctx = _get_context(_context)
    try:
        tui.show_success(ctx.operations.prune())
    except OperationError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e


# ============================================================================
# Config Commands
# ============================================================================


@config_app.command("show")
def config_show(
    _context=None,
) -> None:
    """Show current configuration."""
    ctx = _get_context(_context)
    config = ctx.config

    console.print("\n[bold]Configuration[/bold]")
    console.print(f"  Config file: {ctx.config_manager.config_file}")
    console.print(f"  Tool command: {' '.join(config.tool_command)}")
    console.print(f"  Progress timeout: {config.progress_timeout_secs}s")
    console.print(f"  Poll interval: {config.poll_interval_secs}s")
    console.print(f"  Cancel grace period: {config.cancel_grace_secs}s")
    cancel_command = " ".join(config.cancel_command) or "(disabled)"
    console.print(f"  Cancel command: {escape(cancel_command)}")


@config_app.command("set")
def config_set(
    key: Annotated[str, typer.Argument(help=f"One of: {', '.join(SETTABLE_KEYS)}")],
    value: Annotated[str, typer.Argument(help="Configuration value")],
    _context=None,
) -> None:
    """Set a configuration value."""
    ctx = _get_context(_context)
    try:
        ctx.config_manager.set_value(key, value)
    except ConfigError as e:
        tui.show_error(str(e))
        raise typer.Exit(1) from e
    tui.show_success(f"Set {key} to {value}")


if __name__ == "__main__":
    app()
