"""Parser for the line-delimited JSON that ``ll-cli --json`` writes to stdout.

Each line is classified by the fields it carries:

- ``code`` present -> error event
- ``percentage`` present -> progress event
- otherwise -> plain message event

Lines that are blank or are not a JSON object of that shape are
diagnostic noise and yield no event.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kinds of structured events emitted by ll-cli."""

    PROGRESS = "progress"
    ERROR = "error"
    MESSAGE = "message"


class ToolOutputLine(BaseModel):
    """Raw shape of one ll-cli JSON line.

    Strict so that a quoted number or a boolean is noise, not an event.
    """

    model_config = ConfigDict(strict=True)

    message: str | None = None
    percentage: float | None = None
    code: int | None = None


@dataclass(frozen=True)
class ParsedEvent:
    """A classified output line."""

    kind: EventKind
    message: str
    percentage: float | None = None
    code: int | None = None

    @property
    def display_percentage(self) -> int:
        """Percentage clamped to 0-100 and truncated for display."""
        if self.percentage is None or math.isnan(self.percentage):
            return 0
        return int(min(max(self.percentage, 0.0), 100.0))


def parse_line(line: str) -> ParsedEvent | None:
    """Parse a single line of ll-cli output.

    Args:
        line: Raw line, with or without its trailing newline.

    Returns:
        The classified event, or None for blank and non-JSON lines.
    """
    trimmed = line.strip()
    if not trimmed:
        return None

    try:
        raw = ToolOutputLine.model_validate_json(trimmed)
    except ValidationError as e:
        logger.debug("Ignoring non-JSON line %r: %s", trimmed, e.errors()[0]["msg"])
        return None

    message = raw.message or ""

    if raw.code is not None:
        return ParsedEvent(EventKind.ERROR, message, code=raw.code)
    if raw.percentage is not None:
        return ParsedEvent(EventKind.PROGRESS, message, percentage=raw.percentage)
    return ParsedEvent(EventKind.MESSAGE, message)

