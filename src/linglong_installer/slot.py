"""Single-slot install guard.

At most one install runs at a time. The slot records which package holds
it, whether the user asked to cancel, and the live tool process so the
cancellation path can signal it.

The slot is an ordinary object injected into the installer and the
canceller; tests create one per test instead of sharing global state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from linglong_installer.exceptions import SlotBusyError

if TYPE_CHECKING:
    from linglong_installer.process import InstallProcess

logger = logging.getLogger(__name__)


@dataclass
class SlotState:
    """Record held while an install is in progress."""

    package_ref: str
    cancelled: bool = False
    process: InstallProcess | None = None


class InstallSlot:
    """Mutex-guarded single install slot.

    Every method takes the lock for constant-time work only; nothing here
    waits on the tool process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state: SlotState | None = None

    def acquire(self, package_ref: str) -> None:
        """Occupy the slot for a package.

        Args:
            package_ref: Package about to be installed.

        Raises:
            SlotBusyError: If another install already holds the slot.
        """
        with self._lock:
            if self._state is not None:
                raise SlotBusyError(self._state.package_ref)
            self._state = SlotState(package_ref=package_ref)
        logger.info("Acquired install slot for %s", package_ref)

    def release(self) -> None:
        """Clear the slot. Safe to call when already idle."""
        with self._lock:
            state, self._state = self._state, None
        if state is not None:
            logger.info("Released install slot for %s", state.package_ref)

    def mark_cancelled(self, package_ref: str | None = None) -> bool:
        """Flag the current install as cancelled by the user.

        Args:
            package_ref: If given, only cancel when this package holds the slot.

        Returns:
            True the first time an active install is flagged, False when the
            slot is idle, held by another package, or already flagged.
        """
        with self._lock:
            state = self._state
            if state is None or state.cancelled:
                return False
            if package_ref is not None and state.package_ref != package_ref:
                return False
            state.cancelled = True
        logger.info("Marked install of %s as cancelled", state.package_ref)
        return True

    def is_cancelled(self) -> bool:
        with self._lock:
            return self._state is not None and self._state.cancelled

    def is_idle(self) -> bool:
        with self._lock:
            return self._state is None

    def current_package(self) -> str | None:
        """Get the package currently holding the slot, if any."""
        with self._lock:
            return self._state.package_ref if self._state else None

    def attach_process(self, process: InstallProcess) -> None:
        """Record the tool process of the running install."""
        with self._lock:
            if self._state is not None:
                self._state.process = process

    def process(self) -> InstallProcess | None:
        with self._lock:
            return self._state.process if self._state else None
