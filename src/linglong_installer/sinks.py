"""Progress sinks: where install notifications are delivered."""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable, Iterable
from typing import IO

from linglong_installer.emitter import InstallProgress
from linglong_installer.protocols import ProgressSink

logger = logging.getLogger(__name__)


class NullSink:
    """Discards every notification."""

    def publish(self, progress: InstallProgress) -> None:
        pass


class CallbackSink:
    """Passes each notification to a callable."""

    def __init__(self, callback: Callable[[InstallProgress], None]) -> None:
        self.callback = callback

    def publish(self, progress: InstallProgress) -> None:
        self.callback(progress)


class JsonLinesSink:
    """Writes each notification as one JSON object per line.

    Notifications may come from the install driver and the canceller on
    different threads, so writes are serialized.
    """

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def publish(self, progress: InstallProgress) -> None:
        with self._lock:
            self.stream.write(progress.to_json() + "\n")
            self.stream.flush()



class FanOutSink:
    """Delivers each notification to several sinks.

    A sink that raises is logged and skipped; the others still receive
    the notification.
    """

    def __init__(self, sinks: Iterable[ProgressSink]) -> None:
        self.sinks = list(sinks)

    def publish(self, progress: InstallProgress) -> None:
        for sink in self.sinks:
            try:
                sink.publish(progress)
            except Exception:
                logger.warning("Sink %s failed to publish", type(sink).__name__, exc_info=True)
