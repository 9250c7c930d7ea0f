"""Translation of install events into ``install-progress`` notifications."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from linglong_installer.error_codes import (
    CANCELLED_STATUS,
    CODE_CANCELLED,
    CODE_TIMEOUT,
    COMPLETED_STATUS,
    WAITING_STATUS,
    status_from_code,
    status_from_message,
)
from linglong_installer.protocols import ProgressSink

logger = logging.getLogger(__name__)

INSTALL_PROGRESS_EVENT = "install-progress"


class ProgressEventType(str, Enum):
    """Event kinds understood by the presentation layer."""

    PROGRESS = "progress"
    ERROR = "error"
    MESSAGE = "message"
    CANCELLED = "cancelled"


class InstallProgress(BaseModel):
    """Payload of one ``install-progress`` notification."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    app_id: str = Field(alias="appId")
    event_type: ProgressEventType = Field(alias="eventType")
    message: str
    percentage: int = Field(default=0, ge=0, le=100)
    status: str
    code: int | None = None
    error_detail: str | None = Field(default=None, alias="errorDetail")

    def to_json(self) -> str:
        """Serialize with camelCase keys, omitting unset optional fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ProgressEmitter:
    """Builds notifications for one package and hands them to a sink.

    Delivery is best effort: an exception from the sink is logged and
    dropped so it can never abort an install.
    """

    def __init__(self, sink: ProgressSink, package_ref: str) -> None:
        self.sink = sink
        self.package_ref = package_ref

    def emit_waiting(self) -> None:
        """Announce that the tool has been started."""
        self._emit(
            ProgressEventType.MESSAGE,
            "Starting installation...",
            status=WAITING_STATUS,
        )

    def emit_progress(self, percentage: int, message: str) -> None:
        self._emit(
            ProgressEventType.PROGRESS,
            message,
            percentage=percentage,
            status=status_from_message(message),
        )
        logger.debug("Progress: %s%%", percentage)

    def emit_message(self, message: str, current_percentage: int) -> None:
        """Forward a plain message without changing progress."""
        self._emit(
            ProgressEventType.MESSAGE,
            message,
            percentage=current_percentage,
            status=status_from_message(message),
        )
        logger.debug("Message: %s", message)

    def emit_error(self, code: int, message: str) -> None:
        self._emit(
            ProgressEventType.ERROR,
            message,
            status=status_from_code(code),
            code=code,
            error_detail=message,
        )
        logger.error("Install error for %s: code=%s, message=%s", self.package_ref, code, message)

    def emit_success(self) -> None:
        """Announce completion as a final message at 100%."""
        self._emit(
            ProgressEventType.MESSAGE,
            "Installation completed successfully",
            percentage=100,
            status=COMPLETED_STATUS,
        )

    def emit_cancelled(self) -> None:
        self._emit(
            ProgressEventType.CANCELLED,
            "Installation cancelled by user",
            status=CANCELLED_STATUS,
            code=CODE_CANCELLED,
            error_detail="The user cancelled the installation",
        )

    def emit_timeout(self) -> None:
        self._emit(
            ProgressEventType.ERROR,
            "Installation timed out: no progress for too long",
            status=status_from_code(CODE_TIMEOUT),
            code=CODE_TIMEOUT,
            error_detail="No progress update was received for too long; the installation timed out",
        )
        logger.error("Install of %s timed out", self.package_ref)

    def _emit(
        self,
        event_type: ProgressEventType,
        message: str,
        *,
        status: str,
        percentage: int = 0,
        code: int | None = None,
        error_detail: str | None = None,
    ) -> None:
        progress = InstallProgress(
            app_id=self.package_ref,
            event_type=event_type,
            message=message,
            percentage=percentage,
            status=status,
            code=code,
            error_detail=error_detail,
        )
        try:
            self.sink.publish(progress)
        except Exception:
            logger.warning("Failed to deliver %s notification", INSTALL_PROGRESS_EVENT, exc_info=True)
