"""Lifecycle wrapper around the ll-cli subprocess."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import threading
from collections.abc import Sequence
from typing import IO

from linglong_installer.exceptions import SpawnError, StreamError

logger = logging.getLogger(__name__)

# ll-cli localizes its messages; status mapping expects the English ones.
ENGLISH_LOCALE_ENV = {
    "LC_ALL": "C.UTF-8",
    "LANG": "C.UTF-8",
    "LANGUAGE": "en_US",
    "LC_MESSAGES": "C.UTF-8",
}

# Characters of stderr kept for failure diagnostics
STDERR_TAIL_CHARS = 4000


def tool_environment() -> dict[str, str]:
    """Environment for ll-cli with an English UTF-8 locale enforced."""
    env = dict(os.environ)
    env.update(ENGLISH_LOCALE_ENV)
    return env


class InstallProcess:
    """A running ll-cli process in its own process group.

    Status checks and signals share one lock so a kill never interleaves
    with the reap performed by poll(). Neither blocks.
    """

    def __init__(self, popen: subprocess.Popen[str], stderr_file: IO[bytes]) -> None:
        """Wrap an already started process.

        Args:
            popen: The started process, stdout piped in text mode.
            stderr_file: Temporary file receiving the process's stderr.

        Note:
            Use `spawn()` to start a process.
        """
        self._popen = popen
        self._stderr_file = stderr_file
        self._lock = threading.Lock()

    @classmethod
    def spawn(cls, command: Sequence[str], env: dict[str, str] | None = None) -> InstallProcess:
        """Start a command with stdout piped and stderr captured separately.

        Args:
            command: Executable and arguments.
            env: Environment for the child. Defaults to tool_environment().

        Returns:
            The running process.

        Raises:
            SpawnError: If the process could not be started.
            StreamError: If stdout could not be captured.
        """
        stderr_file = tempfile.TemporaryFile()
        try:
            popen = subprocess.Popen(
                list(command),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=stderr_file,
                env=env if env is not None else tool_environment(),
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            stderr_file.close()
            raise SpawnError(f"Failed to spawn {command[0]} process: {e}") from e

        if popen.stdout is None:
            popen.kill()
            popen.wait()
            stderr_file.close()
            raise StreamError("Failed to capture stdout")

        logger.info("Process spawned with pid %s", popen.pid)
        return cls(popen, stderr_file)

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def stdout(self) -> IO[str]:
        assert self._popen.stdout is not None
        return self._popen.stdout

    def poll(self) -> int | None:
        """Non-blocking exit check.

        Returns:
            Exit code if the process has exited, None while running.
        """
        with self._lock:
            return self._popen.poll()

    def terminate(self) -> None:
        """Ask the process group to stop (SIGTERM)."""
        self._signal(signal.SIGTERM)

    def kill(self) -> None:
        """Force the process group to stop (SIGKILL)."""
        self._signal(signal.SIGKILL)

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for exit without raising on timeout.

        Returns:
            Exit code, or None if the process is still running.
        """
        try:
            return self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def stderr_tail(self) -> str:
        """Return the end of everything the process wrote to stderr."""
        with self._lock:
            self._stderr_file.seek(0)
            data = self._stderr_file.read()
        text = data.decode("utf-8", errors="replace").strip()
        return text[-STDERR_TAIL_CHARS:]

    def close(self, close_stdout: bool = True) -> None:
        """Release the stderr capture file and, optionally, the stdout pipe.

        Args:
            close_stdout: False while a reader thread may still be blocked on
                stdout; closing it then would wait for that read.
        """
        if close_stdout and self._popen.stdout is not None:
            self._popen.stdout.close()
        self._stderr_file.close()

    def _signal(self, sig: signal.Signals) -> None:
        # The group outlives a reaped leader while descendants still run in it.
        with self._lock:
            leader_exited = self._popen.returncode is not None
            logger.info("Sending %s to process group %s", sig.name, self._popen.pid)
            try:
                os.killpg(self._popen.pid, sig)
            except ProcessLookupError:
                pass
            except PermissionError:
                if not leader_exited:
                    self._popen.send_signal(sig)
