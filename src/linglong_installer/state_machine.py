"""Install progress state machine.

Transitions::

    IDLE
      start() ------------------> WAITING
    WAITING
      on_progress() ------------> INSTALLING
      on_error() / on_failure() -> FAILED
      on_success() -------------> SUCCEEDED
    INSTALLING
      on_progress() ------------> INSTALLING
      on_error() / on_failure() -> FAILED
      on_success() -------------> SUCCEEDED

``touch()`` refreshes the stall clock without changing state. SUCCEEDED
and FAILED are terminal: every later call is ignored.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)

# Seconds without progress or message activity before an install is stalled.
PROGRESS_TIMEOUT_SECS = 360.0


class InstallState(str, Enum):
    """States of a single install attempt."""

    IDLE = "idle"
    WAITING = "waiting"
    INSTALLING = "installing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (InstallState.SUCCEEDED, InstallState.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (InstallState.WAITING, InstallState.INSTALLING)


class InstallStateMachine:
    """Tracks the state of one install attempt and its stall clock.

    Owned by a single attempt and only touched from the driver thread,
    so it carries no lock of its own.
    """

    def __init__(
        self,
        timeout_secs: float = PROGRESS_TIMEOUT_SECS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize in the IDLE state.

        Args:
            timeout_secs: Allowed silence before check_timeout() fires.
            clock: Monotonic time source, injectable for tests.
        """
        self.timeout_secs = timeout_secs
        self._clock = clock
        self._state = InstallState.IDLE
        self._last_progress_at = clock()
        self._last_percentage = 0.0

    @property
    def state(self) -> InstallState:
        return self._state

    @property
    def last_percentage(self) -> float:
        return self._last_percentage

    @property
    def last_progress_at(self) -> float:
        return self._last_progress_at

    def start(self) -> None:
        """Enter WAITING once the tool process has been started."""
        if self._state is not InstallState.IDLE:
            logger.debug("Ignoring start() in state %s", self._state.value)
            return
        self._transition(InstallState.WAITING)
        self._last_progress_at = self._clock()
        self._last_percentage = 0.0

    def on_progress(self, percentage: float) -> None:
        """Record a progress event, entering or staying in INSTALLING."""
        if not self._state.is_active:
            return
        if self._state is InstallState.WAITING:
            self._transition(InstallState.INSTALLING)
        self._last_progress_at = self._clock()
        self._last_percentage = min(max(percentage, 0.0), 100.0)

    def on_error(self) -> None:
        """The tool reported a structured error."""
        if self._state.is_active:
            self._transition(InstallState.FAILED, reason="error event")

    def on_failure(self) -> None:
        """The process exited non-zero or stalled."""
        if self._state.is_active:
            self._transition(InstallState.FAILED)

    def on_success(self) -> None:
        """The process exited with status 0."""
        if self._state.is_active:
            self._transition(InstallState.SUCCEEDED)

    def touch(self) -> None:
        """Refresh the stall clock on a plain message event."""
        if self._state.is_active:
            self._last_progress_at = self._clock()

    def check_timeout(self) -> bool:
        """Check whether the attempt has stalled.

        Returns:
            True if waiting or installing with no activity for longer
            than the timeout, False otherwise.
        """
        if not self._state.is_active:
            return False
        return self._clock() - self._last_progress_at > self.timeout_secs

    def _transition(self, new_state: InstallState, reason: str | None = None) -> None:
        suffix = f" ({reason})" if reason else ""
        logger.info("State: %s -> %s%s", self._state.value, new_state.value, suffix)
        self._state = new_state
