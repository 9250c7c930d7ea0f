"""Install orchestration for Linglong packages driven through ll-cli."""

__version__ = "0.1.0"

# Export protocol interfaces for type hints and dependency injection
from linglong_installer.protocols import (
    InstallCancellation,
    PackageInstaller,
    PackageOperations,
    ProgressSink,
)

__all__ = [
    "__version__",
    "InstallCancellation",
    "PackageInstaller",
    "PackageOperations",
    "ProgressSink",
]
