"""Shared test fixtures."""

from __future__ import annotations

import json
import sys
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from linglong_installer.config import InstallerConfig
from linglong_installer.emitter import InstallProgress, ProgressEventType
from linglong_installer.slot import InstallSlot

# Script body for a stand-in ll-cli. Values are substituted with repr().
FAKE_TOOL_TEMPLATE = """\
import json
import signal
import subprocess
import sys
import time

with open({argv_file!r}, "w") as f:
    json.dump(sys.argv[1:], f)

if {on_sigterm!r} == "ignore":
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
elif {on_sigterm!r} == "exit0":
    def _finish(*_):
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        sys.exit(0)

    signal.signal(signal.SIGTERM, _finish)

for line in {lines!r}:
    print(line, flush=True)
    time.sleep({line_delay!r})

if {linger!r}:
    subprocess.Popen([sys.executable, "-c", "import time; time.sleep(%r)" % {linger!r}])

sys.stderr.write({stderr!r})
sys.stderr.flush()
time.sleep({hang!r})
sys.exit({exit_code!r})
"""


class RecordingSink:
    """Collects notifications; optionally signals when one matches."""

    def __init__(self) -> None:
        self.events: list[InstallProgress] = []
        self._lock = threading.Lock()
        self._watchers: list[tuple[Callable[[InstallProgress], bool], threading.Event]] = []

    def publish(self, progress: InstallProgress) -> None:
        with self._lock:
            self.events.append(progress)
            watchers = list(self._watchers)
        for predicate, event in watchers:
            if predicate(progress):
                event.set()

    def watch(self, predicate: Callable[[InstallProgress], bool]) -> threading.Event:
        """Return an Event set when a matching notification arrives."""
        event = threading.Event()
        with self._lock:
            self._watchers.append((predicate, event))
            already = any(predicate(p) for p in self.events)
        if already:
            event.set()
        return event

    def of_type(self, event_type: ProgressEventType) -> list[InstallProgress]:
        with self._lock:
            return [p for p in self.events if p.event_type is event_type]


class FakeTool:
    """A Python script standing in for ll-cli."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.script = directory / "fake_ll_cli.py"
        self.argv_file = directory / "argv.json"

    @property
    def command(self) -> list[str]:
        return [sys.executable, str(self.script)]

    def write(
        self,
        lines: list[str] | None = None,
        exit_code: int = 0,
        stderr: str = "",
        hang: float = 0.0,
        line_delay: float = 0.0,
        on_sigterm: str = "default",
        linger: float = 0.0,
    ) -> FakeTool:
        """Write the script.

        Args:
            lines: Lines printed to stdout, in order.
            exit_code: Exit status after printing.
            stderr: Text written to stderr before exiting.
            hang: Seconds to sleep before exiting.
            line_delay: Seconds between lines.
            on_sigterm: "default", "ignore", or "exit0".
            linger: If set, leave a child holding stdout open this many seconds.
        """
        self.script.write_text(
            FAKE_TOOL_TEMPLATE.format(
                argv_file=str(self.argv_file),
                lines=lines or [],
                exit_code=exit_code,
                stderr=stderr,
                hang=hang,
                line_delay=line_delay,
                on_sigterm=on_sigterm,
                linger=linger,
            )
        )
        return self

    def received_argv(self) -> list[str] | None:
        if not self.argv_file.exists():
            return None
        return json.loads(self.argv_file.read_text())


@pytest.fixture
def slot() -> InstallSlot:
    """A fresh, isolated install slot."""
    return InstallSlot()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_tool(tmp_path: Path) -> FakeTool:
    """A stand-in ll-cli script in a temporary directory."""
    return FakeTool(tmp_path)


@pytest.fixture
def make_config(fake_tool: FakeTool) -> Callable[..., InstallerConfig]:
    """Build a config that runs the fake tool with fast polling and no kill helper."""

    def _make(**overrides: object) -> InstallerConfig:
        values: dict[str, object] = {
            "tool_command": fake_tool.command,
            "poll_interval_secs": 0.02,
            "cancel_command": [],
            "cancel_grace_secs": 5.0,
        }
        values.update(overrides)
        return InstallerConfig(**values)

    return _make
