"""Exception hierarchy for the install orchestration engine."""

from __future__ import annotations


class InstallerError(Exception):
    """Base class for every error raised by linglong-installer."""

    pass


class SlotBusyError(InstallerError):
    """Another install already holds the install slot."""

    def __init__(self, current_ref: str) -> None:
        self.current_ref = current_ref
        super().__init__(
            f"An installation is already in progress: {current_ref}, "
            "wait for it to finish and try again"
        )


class SpawnError(InstallerError):
    """The package manager process could not be started."""

    pass


class StreamError(InstallerError):
    """The package manager's output stream could not be captured."""

    pass


class NoActiveInstallError(InstallerError):
    """A cancellation was requested but there is nothing to cancel."""

    pass


class OperationError(InstallerError):
    """A one-shot package manager command failed."""

    pass


class ConfigError(InstallerError):
    """Invalid configuration key or value."""

    pass
