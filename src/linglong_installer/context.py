"""Application context for dependency injection.

This module separates object creation from object use, enabling testability
and reducing coupling in CLI commands.

The installer and the canceller share one InstallSlot; building them here
is the only place that sharing is wired.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from linglong_installer.config import ConfigManager, InstallerConfig
from linglong_installer.protocols import (
    InstallCancellation,
    PackageInstaller,
    PackageOperations,
    ProgressSink,
)
from linglong_installer.slot import InstallSlot


@dataclass
class AppContext:
    """Container for application dependencies.

    Provides a single injection point for all services used by CLI commands.
    Dependencies are typed with Protocol interfaces so test doubles can be
    injected without inheritance.
    """

    config_manager: ConfigManager
    config: InstallerConfig
    slot: InstallSlot
    installer: PackageInstaller
    canceller: InstallCancellation
    operations: PackageOperations


def create_context(
    config_dir: Path | None = None,
    sink: ProgressSink | None = None,
) -> AppContext:
    """Factory for application dependencies.

    Creates all services with proper wiring. Use this in production code.
    For tests, construct AppContext directly with test doubles.

    Args:
        config_dir: Override config directory (for testing).
        sink: Destination for install notifications. Defaults to dropping them.

    Returns:
        Configured AppContext with all dependencies.
    """
    from linglong_installer.cancel import InstallCanceller
    from linglong_installer.installer import Installer
    from linglong_installer.operations import PackageManagerOperations
    from linglong_installer.sinks import NullSink

    config_manager = (
        ConfigManager.create(config_dir) if config_dir else ConfigManager.create_default()
    )
    config = config_manager.load()
    sink = sink or NullSink()
    slot = InstallSlot()

    return AppContext(
        config_manager=config_manager,
        config=config,
        slot=slot,
        installer=Installer.create(slot=slot, config=config, sink=sink),
        canceller=InstallCanceller(slot=slot, config=config, sink=sink),
        operations=PackageManagerOperations(config),
    )
