"""Protocol definitions for core abstractions.

Components depend on these interfaces rather than on concrete classes,
so tests can inject recording sinks and mocked collaborators.

All concrete implementations satisfy these protocols structurally (duck typing).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from linglong_installer.emitter import InstallProgress
    from linglong_installer.operations import InstalledApp
    from linglong_installer.types import InstallOutcome


@runtime_checkable
class ProgressSink(Protocol):
    """Protocol for delivering install notifications to a presentation layer."""

    def publish(self, progress: InstallProgress) -> None:
        """Deliver one notification.

        Args:
            progress: The notification payload.
        """
        ...


@runtime_checkable
class PackageInstaller(Protocol):
    """Protocol for the install driver."""

    def install(
        self, package_ref: str, version: str | None = None, force: bool = False
    ) -> InstallOutcome:
        """Install a package, blocking until the attempt has an outcome.

        Args:
            package_ref: Application identifier.
            version: Optional version to install instead of the latest.
            force: Pass --force to the package manager.

        Returns:
            The outcome of the attempt.

        Raises:
            SlotBusyError: If another install is in progress.
            SpawnError: If the package manager could not be started.
            StreamError: If its output could not be captured.
        """
        ...


@runtime_checkable
class InstallCancellation(Protocol):
    """Protocol for cancelling the running install."""

    def cancel(self, package_ref: str) -> str:
        """Request cancellation of the install of a package.

        Args:
            package_ref: Package whose install should stop.

        Returns:
            Acknowledgement text.

        Raises:
            NoActiveInstallError: If that package is not being installed.
        """
        ...


@runtime_checkable
class PackageOperations(Protocol):
    """Protocol for one-shot package manager commands."""

    def list_installed(self, include_base_service: bool = False) -> list[InstalledApp]:
        """List installed packages.

        Args:
            include_base_service: Include runtimes and bases, not only apps.

        Returns:
            Installed packages.
        """
        ...

    def search_versions(self, app_id: str) -> list[InstalledApp]:
        """List every installed version of an application.

        Args:
            app_id: Application identifier.

        Returns:
            Matching installed packages.
        """
        ...

    def kill_app(self, app_id: str) -> str:
        """Stop a running application."""
        ...

    def uninstall(self, app_id: str, version: str) -> str:
        """Stop and uninstall one version of an application."""
        ...

    def run_app(self, app_id: str) -> str:
        """Launch an application without waiting for it."""
        ...

    def prune(self) -> str:
        """Remove unused runtimes and bases."""
        ...
