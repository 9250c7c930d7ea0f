"""Status text derived from ll-cli error codes and progress messages.

Both lookups are plain tables so they can be reviewed and localized
without touching control flow. Codes follow linglong's ErrorCode
enumeration; -2 is reserved for the installer's own stall timeout.
"""

from __future__ import annotations

CODE_FAILED = -1
CODE_TIMEOUT = -2
CODE_CANCELLED = 1

WAITING_STATUS = "Waiting to install"
COMPLETED_STATUS = "Installation complete"
CANCELLED_STATUS = "Installation cancelled"
PROCESSING_STATUS = "Processing"

# Longer messages are cut to this many characters when used as a status.
MAX_STATUS_LENGTH = 50

ERROR_CODE_STATUS: dict[int, str] = {
    CODE_FAILED: "Install failed: general error",
    CODE_TIMEOUT: "Install failed: progress timed out",
    CODE_CANCELLED: CANCELLED_STATUS,
    # 1000: generic
    1000: "Install failed: unknown error",
    1001: "Install failed: application not found in remote repository",
    1002: "Install failed: application not found locally",
    # 2000: install
    2001: "Install failed",
    2002: "Install failed: application not available remotely",
    2003: "Install failed: same version already installed",
    2004: "Install failed: downgrade required",
    2005: "Install failed: a version cannot be specified when installing a module",
    2006: "Install failed: install the application before its modules",
    2007: "Install failed: module already exists",
    2008: "Install failed: architecture mismatch",
    2009: "Install failed: module not available remotely",
    2010: "Install failed: erofs extraction command missing",
    2011: "Install failed: unsupported file format",
    # 2100: uninstall
    2101: "Uninstall failed",
    2102: "Uninstall failed: application not found locally",
    2103: "Uninstall failed: application is running",
    2104: "Uninstall failed: layer compatibility error",
    2105: "Uninstall failed: multiple versions installed",
    2106: "Uninstall failed: base or runtime cannot be removed",
    # 2200: upgrade
    2201: "Upgrade failed",
    2202: "Upgrade failed: application not found locally",
    # 3000: network
    3001: "Install failed: network error",
    # 4000: arguments
    4001: "Install failed: invalid reference",
    4002: "Install failed: unknown architecture",
}

# Checked in order against the lower-cased message; first match wins.
MESSAGE_STATUS: tuple[tuple[str, str], ...] = (
    ("beginning to install", "Starting installation"),
    ("installing application", "Installing application"),
    ("installing runtime", "Installing runtime"),
    ("installing base", "Installing base"),
    ("downloading metadata", "Downloading metadata"),
    ("downloading files", "Downloading files"),
    ("downloading", "Downloading files"),
    ("processing after install", "Post-install processing"),
    ("success", COMPLETED_STATUS),
)


def status_from_code(code: int) -> str:
    """Get a user-facing status for an error code.

    Args:
        code: Error code reported by ll-cli or the installer.

    Returns:
        Mapped status text, or a generic text carrying the code inline.
    """
    status = ERROR_CODE_STATUS.get(code)
    if status is None:
        return f"Install failed: error code {code}"
    return status


def status_from_message(message: str) -> str:
    """Get a user-facing status for a progress or plain message.

    Args:
        message: Raw message text from ll-cli.

    Returns:
        Mapped status text, the truncated message, or a generic placeholder.
    """
    lower = message.lower()
    for needle, status in MESSAGE_STATUS:
        if needle in lower:
            return status
    if not message:
        return PROCESSING_STATUS
    if len(message) > MAX_STATUS_LENGTH:
        return f"{message[:MAX_STATUS_LENGTH]}..."
    return message
