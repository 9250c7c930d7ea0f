"""Tests for the install driver, run against a fake ll-cli script."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from linglong_installer.cancel import InstallCanceller
from linglong_installer.config import InstallerConfig
from linglong_installer.emitter import ProgressEventType
from linglong_installer.exceptions import SlotBusyError, SpawnError
from linglong_installer.installer import Installer, build_package_ref
from linglong_installer.slot import InstallSlot
from linglong_installer.types import InstallOutcome, OutcomeStatus

if TYPE_CHECKING:
    from conftest import FakeTool, RecordingSink

# Generous bound for anything that should happen within a poll or two
WAIT_SECS = 10.0


def line(**fields: object) -> str:
    return json.dumps(fields)


class InstallThread(threading.Thread):
    """Runs one install in the background and keeps its result."""

    def __init__(self, installer: Installer, package_ref: str, **kwargs: object) -> None:
        super().__init__(daemon=True)
        self.installer = installer
        self.package_ref = package_ref
        self.kwargs = kwargs
        self.outcome: InstallOutcome | None = None
        self.error: BaseException | None = None

    def run(self) -> None:
        try:
            self.outcome = self.installer.install(self.package_ref, **self.kwargs)
        except BaseException as e:
            self.error = e


def is_progress(percentage: int) -> Callable[..., bool]:
    return lambda p: p.event_type is ProgressEventType.PROGRESS and p.percentage == percentage


@pytest.fixture
def build_installer(
    slot: InstallSlot,
    recording_sink: RecordingSink,
    make_config: Callable[..., InstallerConfig],
) -> Callable[..., Installer]:
    def _build(**overrides: object) -> Installer:
        return Installer(slot=slot, config=make_config(**overrides), sink=recording_sink)

    return _build


class TestBuildCommand:
    """Tests for the ll-cli command line."""

    def test_latest_version(self) -> None:
        installer = Installer.create(InstallSlot())

        assert installer.build_command("org.example.app") == [
            "ll-cli",
            "install",
            "org.example.app",
            "--json",
            "-y",
        ]

    def test_version_and_force(self) -> None:
        installer = Installer.create(InstallSlot())

        command = installer.build_command("org.example.app", "1.2.0", force=True)

        assert command[1:] == ["install", "org.example.app/1.2.0", "--json", "-y", "--force"]

    def test_custom_tool_command(self) -> None:
        config = InstallerConfig(tool_command=["sudo", "ll-cli"])
        installer = Installer.create(InstallSlot(), config=config)

        assert installer.build_command("a")[:3] == ["sudo", "ll-cli", "install"]

    def test_build_package_ref(self) -> None:
        assert build_package_ref("org.example.app") == "org.example.app"
        assert build_package_ref("org.example.app", "") == "org.example.app"
        assert build_package_ref("org.example.app", "2.0") == "org.example.app/2.0"


class TestInstallSuccess:
    """Tests for installs where ll-cli exits 0."""

    def test_duplicate_percentages_are_suppressed(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
        slot: InstallSlot,
    ) -> None:
        """Test 10, 10, 55 produces exactly two progress notifications."""
        # Arrange
        fake_tool.write(
            lines=[line(percentage=10), line(percentage=10), line(percentage=55)],
        )
        installer = build_installer()

        # Act
        outcome = installer.install("org.example.app")

        # Assert
        assert outcome.status is OutcomeStatus.SUCCEEDED
        assert outcome.ok
        assert outcome.message == "Successfully installed org.example.app"
        progress = recording_sink.of_type(ProgressEventType.PROGRESS)
        assert [p.percentage for p in progress] == [10, 55]
        assert slot.is_idle()

    def test_invokes_tool_with_json_flags(
        self, build_installer: Callable[..., Installer], fake_tool: FakeTool
    ) -> None:
        """Test the tool receives the install arguments."""
        fake_tool.write()

        build_installer().install("org.example.app")

        assert fake_tool.received_argv() == ["install", "org.example.app", "--json", "-y"]

    def test_version_in_message(
        self, build_installer: Callable[..., Installer], fake_tool: FakeTool
    ) -> None:
        fake_tool.write()

        outcome = build_installer().install("org.example.app", version="1.2.0", force=True)

        assert outcome.message == "Successfully installed org.example.app version 1.2.0"
        assert fake_tool.received_argv() == [
            "install",
            "org.example.app/1.2.0",
            "--json",
            "-y",
            "--force",
        ]

    def test_notification_sequence(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
    ) -> None:
        """Test waiting, progress, messages and completion arrive in order."""
        fake_tool.write(
            lines=[
                line(message="Beginning to install"),
                line(message="Downloading files", percentage=40.7),
                line(message="Processing after install"),
            ],
        )

        build_installer().install("org.example.app")

        events = recording_sink.events
        assert [e.status for e in events] == [
            "Waiting to install",
            "Starting installation",
            "Downloading files",
            "Post-install processing",
            "Installation complete",
        ]
        assert events[1].percentage == 0
        assert events[2].percentage == 40
        assert events[3].percentage == 40
        assert events[-1].percentage == 100
        assert all(e.app_id == "org.example.app" for e in events)

    def test_noise_lines_are_ignored(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
    ) -> None:
        """Test non-JSON output neither fails the install nor reaches the sink."""
        fake_tool.write(
            lines=["Resolving dependencies...", "", "[1/3] fetching", line(percentage=30)],
        )

        outcome = build_installer().install("org.example.app")

        assert outcome.ok
        progress = recording_sink.of_type(ProgressEventType.PROGRESS)
        assert [p.percentage for p in progress] == [30]
        assert not recording_sink.of_type(ProgressEventType.ERROR)

    def test_raising_sink_does_not_break_install(
        self, slot: InstallSlot, make_config: Callable[..., InstallerConfig], fake_tool: FakeTool
    ) -> None:
        """Test sink failures are absorbed."""

        class BrokenSink:
            def publish(self, progress: object) -> None:
                raise RuntimeError("frontend gone")

        fake_tool.write(lines=[line(percentage=50)])
        installer = Installer(slot=slot, config=make_config(), sink=BrokenSink())

        outcome = installer.install("org.example.app")

        assert outcome.ok
        assert slot.is_idle()


class TestInstallFailure:
    """Tests for installs where ll-cli exits non-zero."""

    def test_tool_reported_error(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
        slot: InstallSlot,
    ) -> None:
        """Test the last structured error becomes the failure."""
        fake_tool.write(
            lines=[line(percentage=20), line(code=2003, message="same version")],
            exit_code=1,
        )

        outcome = build_installer().install("org.example.app")

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.code == 2003
        assert outcome.message == "Installation failed: same version"
        errors = recording_sink.of_type(ProgressEventType.ERROR)
        assert errors[-1].code == 2003
        assert "same version already installed" in errors[-1].status
        assert slot.is_idle()

    def test_last_error_wins(
        self, build_installer: Callable[..., Installer], fake_tool: FakeTool
    ) -> None:
        fake_tool.write(
            lines=[line(code=3001, message="network"), line(code=2001, message="install")],
            exit_code=1,
        )

        outcome = build_installer().install("org.example.app")

        assert outcome.code == 2001

    def test_unknown_error_with_stderr_detail(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
    ) -> None:
        """Test a bare non-zero exit falls back to a generic failure."""
        fake_tool.write(stderr="ll-cli: permission denied\n", exit_code=3)

        outcome = build_installer().install("org.example.app")

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.code == -1
        assert outcome.message == "Installation failed: Unknown error"
        assert outcome.detail == "ll-cli: permission denied"
        errors = recording_sink.of_type(ProgressEventType.ERROR)
        assert len(errors) == 1
        assert errors[0].code == -1

    def test_error_then_exit_zero_is_success(
        self, build_installer: Callable[..., Installer], fake_tool: FakeTool
    ) -> None:
        """Test the exit status decides the outcome, not earlier error lines."""
        fake_tool.write(lines=[line(code=3001, message="retrying")], exit_code=0)

        outcome = build_installer().install("org.example.app")

        assert outcome.ok


class TestInstallRejected:
    """Tests for installs that never start."""

    def test_busy_slot_spawns_nothing(
        self, build_installer: Callable[..., Installer], fake_tool: FakeTool, slot: InstallSlot
    ) -> None:
        """Test a second install is rejected while one is running."""
        fake_tool.write()
        slot.acquire("org.example.app")

        with pytest.raises(SlotBusyError) as exc_info:
            build_installer().install("org.other.app")

        assert exc_info.value.current_ref == "org.example.app"
        assert fake_tool.received_argv() is None
        assert slot.current_package() == "org.example.app"

    def test_spawn_failure_releases_slot(
        self,
        slot: InstallSlot,
        make_config: Callable[..., InstallerConfig],
        recording_sink: RecordingSink,
        tmp_path: Path,
    ) -> None:
        """Test a missing tool raises and leaves the slot idle."""
        config = make_config(tool_command=[str(tmp_path / "no-such-ll-cli")])
        installer = Installer(slot=slot, config=config, sink=recording_sink)

        with pytest.raises(SpawnError):
            installer.install("org.example.app")

        assert slot.is_idle()
        assert recording_sink.events == []


class TestInstallTimeout:
    """Tests for stalled installs."""

    def test_stall_kills_process(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
        slot: InstallSlot,
    ) -> None:
        """Test silence longer than the timeout fails with the timeout code."""
        fake_tool.write(lines=[line(percentage=5)], hang=30)
        installer = build_installer(progress_timeout_secs=0.3)

        outcome = installer.install("org.example.app")

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.code == -2
        assert outcome.message == "Installation timed out"
        errors = recording_sink.of_type(ProgressEventType.ERROR)
        assert [e.code for e in errors] == [-2]
        assert slot.is_idle()

    def test_stall_while_waiting(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
        slot: InstallSlot,
    ) -> None:
        """Test a tool that never prints anything is killed for stalling."""
        fake_tool.write(hang=30)
        thread = InstallThread(build_installer(progress_timeout_secs=0.3), "org.example.app")

        thread.start()
        thread.join(WAIT_SECS)

        assert not thread.is_alive()
        assert thread.outcome is not None
        assert thread.outcome.code == -2
        assert [e.status for e in recording_sink.events][0] == "Waiting to install"
        assert slot.is_idle()

    def test_stall_after_error_line(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
        slot: InstallSlot,
    ) -> None:
        """Test a tool that reports an error and then hangs is still killed."""
        # Arrange
        fake_tool.write(lines=[line(code=3001, message="net")], hang=30)
        thread = InstallThread(build_installer(progress_timeout_secs=1.0), "org.example.app")

        # Act
        thread.start()
        thread.join(WAIT_SECS)

        # Assert
        assert not thread.is_alive()
        assert thread.outcome is not None
        assert thread.outcome.status is OutcomeStatus.FAILED
        assert thread.outcome.code == -2
        errors = recording_sink.of_type(ProgressEventType.ERROR)
        assert [e.code for e in errors] == [3001, -2]
        assert slot.is_idle()

    def test_steady_output_prevents_timeout(
        self, build_installer: Callable[..., Installer], fake_tool: FakeTool
    ) -> None:
        """Test messages arriving within the window keep the install alive."""
        fake_tool.write(
            lines=[line(message=f"step {i}") for i in range(10)],
            line_delay=0.25,
        )
        installer = build_installer(progress_timeout_secs=1.5)

        outcome = installer.install("org.example.app")

        assert outcome.ok


class TestInstallCancellation:
    """Tests for cancelling a running install."""

    def start_install(
        self, installer: Installer, recording_sink: RecordingSink
    ) -> InstallThread:
        started = recording_sink.watch(is_progress(10))
        thread = InstallThread(installer, "org.example.app")
        thread.start()
        assert started.wait(WAIT_SECS), "install never reported progress"
        return thread

    def test_cancel_yields_cancelled(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
        slot: InstallSlot,
    ) -> None:
        """Test a cancelled install reports Cancelled without a failure event."""
        # Arrange
        fake_tool.write(lines=[line(percentage=10)], hang=30)
        installer = build_installer()
        canceller = InstallCanceller(slot, installer.config, recording_sink)
        thread = self.start_install(installer, recording_sink)

        # Act
        ack = canceller.cancel("org.example.app")
        thread.join(WAIT_SECS)

        # Assert
        assert ack == "Cancelled installation of org.example.app"
        assert thread.error is None
        assert thread.outcome is not None
        assert thread.outcome.status is OutcomeStatus.CANCELLED
        assert thread.outcome.code == 1
        assert not recording_sink.of_type(ProgressEventType.ERROR)
        assert len(recording_sink.of_type(ProgressEventType.CANCELLED)) == 1
        assert slot.is_idle()

    def test_exit_zero_after_cancel_is_success(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
    ) -> None:
        """Test a tool that finishes cleanly despite the cancel still succeeds."""
        fake_tool.write(lines=[line(percentage=10)], hang=30, on_sigterm="exit0")
        installer = build_installer()
        canceller = InstallCanceller(installer.slot, installer.config, recording_sink)
        thread = self.start_install(installer, recording_sink)

        canceller.cancel("org.example.app")
        thread.join(WAIT_SECS)

        assert thread.outcome is not None
        assert thread.outcome.status is OutcomeStatus.SUCCEEDED

    def test_ignored_sigterm_escalates_to_kill(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
        slot: InstallSlot,
    ) -> None:
        """Test a tool ignoring SIGTERM is killed after the grace period."""
        fake_tool.write(lines=[line(percentage=10)], hang=30, on_sigterm="ignore")
        installer = build_installer(cancel_grace_secs=0.3)
        canceller = InstallCanceller(slot, installer.config, recording_sink)
        thread = self.start_install(installer, recording_sink)

        canceller.cancel("org.example.app")
        thread.join(WAIT_SECS)

        assert not thread.is_alive()
        assert thread.outcome is not None
        assert thread.outcome.status is OutcomeStatus.CANCELLED
        assert slot.is_idle()

    def test_slot_reusable_after_cancel(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        recording_sink: RecordingSink,
    ) -> None:
        """Test a new install can start once a cancelled one has finished."""
        fake_tool.write(lines=[line(percentage=10)], hang=30)
        installer = build_installer()
        canceller = InstallCanceller(installer.slot, installer.config, recording_sink)
        thread = self.start_install(installer, recording_sink)
        canceller.cancel("org.example.app")
        thread.join(WAIT_SECS)

        fake_tool.write(lines=[line(percentage=100)])
        outcome = installer.install("org.other.app")

        assert outcome.ok


class TestLeftoverProcesses:
    """Tests for descendants that outlive the tool."""

    def test_lingering_child_does_not_hold_slot(
        self,
        build_installer: Callable[..., Installer],
        fake_tool: FakeTool,
        slot: InstallSlot,
    ) -> None:
        """Test a child keeping stdout open is killed once the tool exits."""
        fake_tool.write(lines=[line(percentage=100)], linger=60)
        thread = InstallThread(build_installer(), "org.example.app")

        thread.start()
        thread.join(WAIT_SECS)

        assert not thread.is_alive()
        assert thread.error is None
        assert thread.outcome is not None
        assert thread.outcome.ok
        assert slot.is_idle()
