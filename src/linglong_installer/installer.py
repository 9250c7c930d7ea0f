"""Install driver: runs ``ll-cli install`` and turns its output into an outcome.

Three sources race to end an attempt: the process exiting, the stall
timeout, and a cancellation flagged on the slot by another thread. The
driver resolves them in one polling loop:

- a reader thread parses stdout and passes events over a queue,
- the driver waits on that queue for at most one poll interval,
  applies the events, then checks exit status, the stall clock and
  the cancellation flag.

The slot is released exactly once, in a ``finally``, on every path.
"""

from __future__ import annotations

import logging
import queue
import shlex
import threading
import time
from collections.abc import Callable
from typing import IO

from linglong_installer.config import InstallerConfig
from linglong_installer.emitter import ProgressEmitter
from linglong_installer.error_codes import CODE_FAILED, CODE_TIMEOUT
from linglong_installer.parser import EventKind, ParsedEvent, parse_line
from linglong_installer.process import InstallProcess, tool_environment
from linglong_installer.protocols import ProgressSink
from linglong_installer.sinks import NullSink
from linglong_installer.slot import InstallSlot
from linglong_installer.state_machine import InstallStateMachine
from linglong_installer.types import InstallOutcome

logger = logging.getLogger(__name__)

# Marks the end of the tool's stdout on the event queue
_END_OF_STREAM = object()

# Bounded wait for the process or the reader to finish after exit or a kill
READER_JOIN_TIMEOUT_SECS = 2.0


def build_package_ref(app_id: str, version: str | None = None) -> str:
    """Combine an application id and optional version into an ll-cli reference."""
    return f"{app_id}/{version}" if version else app_id


def _read_output(stream: IO[str], events: queue.Queue[object]) -> None:
    """Reader thread body: parse stdout line by line until end of stream."""
    try:
        for line in stream:
            logger.debug("Raw line: %s", line.rstrip("\n"))
            event = parse_line(line)
            if event is not None:
                events.put(event)
    except (OSError, ValueError) as e:
        logger.warning("Stopped reading install output: %s", e)
    finally:
        events.put(_END_OF_STREAM)
    logger.debug("Finished reading install output")


class _EventTracker:
    """Applies parsed events on the driver thread.

    Owns the attempt's last-error cache, the last percentage sent and the
    time of the last line of any kind, so none of them needs a lock.
    """

    def __init__(
        self,
        machine: InstallStateMachine,
        emitter: ProgressEmitter,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.machine = machine
        self.emitter = emitter
        self._clock = clock
        self.last_sent_percentage = 0
        self.last_error: tuple[int, str] | None = None
        self.last_activity_at = clock()

    def pump(self, events: queue.Queue[object], timeout: float) -> None:
        """Apply queued events, waiting up to `timeout` for the first one."""
        try:
            item = events.get(timeout=timeout) if timeout > 0 else events.get_nowait()
        except queue.Empty:
            return
        while True:
            if item is not _END_OF_STREAM:
                self.apply(item)  # type: ignore[arg-type]
            try:
                item = events.get_nowait()
            except queue.Empty:
                return

    def apply(self, event: ParsedEvent) -> None:
        self.last_activity_at = self._clock()
        if event.kind is EventKind.PROGRESS:
            self.machine.on_progress(event.percentage or 0.0)
            percentage = event.display_percentage
            if percentage != self.last_sent_percentage:
                self.last_sent_percentage = percentage
                self.emitter.emit_progress(percentage, event.message)
        elif event.kind is EventKind.ERROR:
            code = event.code if event.code is not None else CODE_FAILED
            self.machine.on_error()
            self.last_error = (code, event.message)
            self.emitter.emit_error(code, event.message)
        else:
            self.machine.touch()
            self.emitter.emit_message(event.message, self.last_sent_percentage)


class Installer:
    """Installs Linglong packages one at a time.

    Follows Separate Use from Creation: constructor requires all dependencies.
    Use factory method `create()` for production instantiation with defaults.
    """

    def __init__(
        self,
        slot: InstallSlot,
        config: InstallerConfig,
        sink: ProgressSink,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the installer with required dependencies.

        Args:
            slot: Install slot shared with the canceller.
            config: Tool command, timeouts and polling settings.
            sink: Destination for progress notifications.
            clock: Monotonic time source for the stall clock.
        """
        self.slot = slot
        self.config = config
        self.sink = sink
        self._clock = clock

    @classmethod
    def create(
        cls,
        slot: InstallSlot,
        config: InstallerConfig | None = None,
        sink: ProgressSink | None = None,
    ) -> Installer:
        """Factory method for production instantiation.

        Args:
            slot: Install slot shared with the canceller.
            config: Optional configuration (defaults if not provided).
            sink: Optional notification sink (notifications dropped if not provided).

        Returns:
            Configured Installer instance.
        """
        return cls(slot=slot, config=config or InstallerConfig(), sink=sink or NullSink())

    def build_command(self, app_id: str, version: str | None = None, force: bool = False) -> list[str]:
        """Compose the ll-cli install command line."""
        command = [
            *self.config.tool_command,
            "install",
            build_package_ref(app_id, version),
            "--json",
            "-y",
        ]
        if force:
            command.append("--force")
        return command

    def install(
        self, package_ref: str, version: str | None = None, force: bool = False
    ) -> InstallOutcome:
        """Install a package and wait for the outcome.

        Args:
            package_ref: Application identifier (e.g. org.deepin.calculator).
            version: Optional version; the latest is installed when omitted.
            force: Reinstall even when the tool would refuse.

        Returns:
            Succeeded, Cancelled or Failed outcome.

        Raises:
            SlotBusyError: If another install holds the slot; nothing is spawned.
            SpawnError: If ll-cli could not be started.
            StreamError: If its stdout could not be captured.
        """
        logger.info("Install requested: %s (version=%s, force=%s)", package_ref, version, force)
        self.slot.acquire(package_ref)
        try:
            return self._run(package_ref, version, force)
        finally:
            self.slot.release()

    def _run(self, package_ref: str, version: str | None, force: bool) -> InstallOutcome:
        emitter = ProgressEmitter(self.sink, package_ref)
        command = self.build_command(package_ref, version, force)
        logger.info("Executing: %s", shlex.join(command))

        process = InstallProcess.spawn(command, env=tool_environment())
        self.slot.attach_process(process)

        machine = InstallStateMachine(
            timeout_secs=self.config.progress_timeout_secs, clock=self._clock
        )
        machine.start()
        emitter.emit_waiting()

        events: queue.Queue[object] = queue.Queue()
        tracker = _EventTracker(machine, emitter, self._clock)
        reader = threading.Thread(
            target=_read_output,
            args=(process.stdout, events),
            name=f"install-reader[{package_ref}]",
            daemon=True,
        )
        reader.start()

        try:
            exit_code = self._wait_for_exit(process, machine, tracker, events)

            if exit_code is None:
                machine.on_failure()
                emitter.emit_timeout()
                process.wait(timeout=READER_JOIN_TIMEOUT_SECS)
                reader.join(timeout=READER_JOIN_TIMEOUT_SECS)
                return InstallOutcome.failed(
                    package_ref, CODE_TIMEOUT, "Installation timed out"
                )

            logger.info("Process exited with status %s", exit_code)
            reader.join(timeout=READER_JOIN_TIMEOUT_SECS)
            if reader.is_alive():
                # A descendant still holds stdout open.
                logger.warning(
                    "Output of %s still open after exit, killing its process group",
                    package_ref,
                )
                process.kill()
                reader.join(timeout=READER_JOIN_TIMEOUT_SECS)
            tracker.pump(events, timeout=0)
            return self._compose_outcome(
                package_ref, version, exit_code, process, machine, tracker, emitter
            )
        except BaseException:
            process.kill()
            raise
        finally:
            process.close(close_stdout=not reader.is_alive())

    def _wait_for_exit(
        self,
        process: InstallProcess,
        machine: InstallStateMachine,
        tracker: _EventTracker,
        events: queue.Queue[object],
    ) -> int | None:
        """Poll until the process exits or stalls.

        Returns:
            The exit code, or None if the process was killed for stalling.
        """
        cancel_seen_at: float | None = None
        escalated = False

        while True:
            tracker.pump(events, timeout=self.config.poll_interval_secs)

            exit_code = process.poll()
            if exit_code is not None:
                return exit_code

            if self._stalled(machine, tracker):
                logger.warning(
                    "No progress for %ss, killing process %s",
                    self.config.progress_timeout_secs,
                    process.pid,
                )
                process.kill()
                return None

            if not self.slot.is_cancelled():
                continue
            if cancel_seen_at is None:
                # Covers a cancel that landed before the process was attached.
                cancel_seen_at = self._clock()
                process.terminate()
            elif not escalated and self._clock() - cancel_seen_at > self.config.cancel_grace_secs:
                logger.warning("Process %s ignored SIGTERM, killing it", process.pid)
                process.kill()
                escalated = True

    def _stalled(self, machine: InstallStateMachine, tracker: _EventTracker) -> bool:
        """Check for silence longer than the progress timeout.

        The state machine stops its clock once a structured error moves it to
        FAILED, but the process may keep running; the driver's own activity
        clock covers that case.
        """
        if machine.check_timeout():
            return True
        if not machine.state.is_terminal:
            return False
        return self._clock() - tracker.last_activity_at > self.config.progress_timeout_secs

    def _compose_outcome(
        self,
        package_ref: str,
        version: str | None,
        exit_code: int,
        process: InstallProcess,
        machine: InstallStateMachine,
        tracker: _EventTracker,
        emitter: ProgressEmitter,
    ) -> InstallOutcome:
        was_cancelled = self.slot.is_cancelled()

        if exit_code == 0:
            if was_cancelled:
                logger.info("%s finished before the cancellation took effect", package_ref)
            machine.on_success()
            emitter.emit_success()
            if version:
                message = f"Successfully installed {package_ref} version {version}"
            else:
                message = f"Successfully installed {package_ref}"
            logger.info("%s", message)
            return InstallOutcome.succeeded(package_ref, message)

        if was_cancelled:
            # The canceller already sent the cancelled notification.
            logger.info("Process for %s stopped by user cancellation", package_ref)
            return InstallOutcome.cancelled(package_ref)

        machine.on_failure()
        code, error_message = tracker.last_error or (CODE_FAILED, "Unknown error")
        detail = process.stderr_tail() or None
        if detail:
            logger.warning("ll-cli stderr for %s:\n%s", package_ref, detail)
        emitter.emit_error(code, error_message)
        logger.error("Installation of %s failed: %s", package_ref, error_message)
        return InstallOutcome.failed(
            package_ref, code, f"Installation failed: {error_message}", detail=detail
        )
