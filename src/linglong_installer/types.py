"""Shared data types for the install engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from linglong_installer.error_codes import CODE_CANCELLED

__all__ = ["InstallOutcome", "OutcomeStatus"]


class OutcomeStatus(str, Enum):
    """Terminal classification of one install attempt."""

    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallOutcome:
    """Result of an install attempt.

    Exactly one outcome is produced per attempt.

    Attributes:
        status: Success, cancellation or failure.
        package_ref: Identifier of the package that was being installed.
        message: Human-readable summary.
        code: Error code (None on success).
        detail: Diagnostic text captured from the tool's stderr, if any.
    """

    status: OutcomeStatus
    package_ref: str
    message: str
    code: int | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        """Validate invariants."""
        if not self.package_ref:
            raise ValueError("package_ref cannot be empty")
        if self.status is OutcomeStatus.SUCCEEDED and self.code is not None:
            raise ValueError("succeeded outcome cannot carry an error code")
        if self.status is not OutcomeStatus.SUCCEEDED and self.code is None:
            raise ValueError(f"{self.status.value} outcome requires an error code")

    @classmethod
    def succeeded(cls, package_ref: str, message: str) -> InstallOutcome:
        return cls(OutcomeStatus.SUCCEEDED, package_ref, message)

    @classmethod
    def cancelled(cls, package_ref: str) -> InstallOutcome:
        return cls(
            OutcomeStatus.CANCELLED,
            package_ref,
            "Installation cancelled by user",
            code=CODE_CANCELLED,
        )

    @classmethod
    def failed(
        cls, package_ref: str, code: int, message: str, detail: str | None = None
    ) -> InstallOutcome:
        return cls(OutcomeStatus.FAILED, package_ref, message, code=code, detail=detail)

    @property
    def ok(self) -> bool:
        """True if the package was installed."""
        return self.status is OutcomeStatus.SUCCEEDED
