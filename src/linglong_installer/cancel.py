"""Cancellation of the running install."""

from __future__ import annotations

import logging
import shlex
import subprocess

from linglong_installer.config import InstallerConfig
from linglong_installer.emitter import ProgressEmitter
from linglong_installer.exceptions import NoActiveInstallError
from linglong_installer.protocols import ProgressSink
from linglong_installer.slot import InstallSlot

logger = logging.getLogger(__name__)


class InstallCanceller:
    """Stops the install currently holding the slot.

    The slot is flagged first so the install driver reports the eventual
    non-zero exit as a cancellation, not a failure. Releasing the slot is
    left to the driver.
    """

    def __init__(self, slot: InstallSlot, config: InstallerConfig, sink: ProgressSink) -> None:
        self.slot = slot
        self.config = config
        self.sink = sink

    def cancel(self, package_ref: str) -> str:
        """Cancel the install of a package.

        Sends SIGTERM to the tool's process group, then runs the elevated
        kill helper so ll-package-manager stops as well. The driver kills
        the group outright if it is still alive after the grace period.

        Args:
            package_ref: Package whose install should stop.

        Returns:
            Acknowledgement text.

        Raises:
            NoActiveInstallError: If that package is not being installed or
                its cancellation was already requested.
        """
        logger.info("Cancelling installation of %s", package_ref)

        if not self.slot.mark_cancelled(package_ref):
            current = self.slot.current_package()
            if current is None:
                message = "No installation in progress"
            elif current != package_ref:
                message = f"{package_ref} is not being installed (current: {current})"
            else:
                message = f"Cancellation of {package_ref} was already requested"
            logger.warning("%s", message)
            raise NoActiveInstallError(message)

        process = self.slot.process()
        if process is not None:
            process.terminate()

        self._run_kill_helper()

        ProgressEmitter(self.sink, package_ref).emit_cancelled()

        ack = f"Cancelled installation of {package_ref}"
        logger.info("%s", ack)
        return ack

    def _run_kill_helper(self) -> None:
        """Run the privileged kill helper; failures are logged only."""
        command = self.config.cancel_command
        if not command:
            logger.debug("No elevated kill helper configured")
            return

        logger.info("Executing: %s", shlex.join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.config.cancel_helper_timeout_secs,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Kill helper failed: %s", e)
            return

        if result.returncode != 0:
            logger.warning(
                "Kill helper exited with %s: %s", result.returncode, result.stderr.strip()
            )
