"""One-shot ll-cli commands: list, search, kill, uninstall, run, prune."""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from linglong_installer.config import InstallerConfig
from linglong_installer.exceptions import OperationError
from linglong_installer.process import tool_environment

logger = logging.getLogger(__name__)


class InstalledApp(BaseModel):
    """An installed Linglong package as reported by ``ll-cli list --json``."""

    model_config = ConfigDict(populate_by_name=True)

    app_id: str | None = Field(
        default=None, validation_alias=AliasChoices("appId", "app_id", "id", "appid")
    )
    name: str
    version: str
    arch: str = ""
    channel: str = ""
    description: str = ""
    kind: str | None = None
    module: str = ""
    runtime: str = ""
    size: str = "0"
    repo_name: str = Field(default="stable", alias="repoName")

    @field_validator("arch", mode="before")
    @classmethod
    def _first_arch(cls, value: Any) -> str:
        # ll-cli reports either "x86_64" or ["x86_64"]
        if isinstance(value, list):
            return str(value[0]) if value else ""
        return value if isinstance(value, str) else ""

    @field_validator("size", mode="before")
    @classmethod
    def _size_text(cls, value: Any) -> str:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value if isinstance(value, str) else "0"

    @field_validator("description", "module", "runtime", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def ident(self) -> str:
        """Application id, falling back to the name."""
        return self.app_id or self.name


class PackageManagerOperations:
    """Synchronous ll-cli commands outside the install flow."""

    def __init__(self, config: InstallerConfig) -> None:
        self.config = config

    def list_installed(self, include_base_service: bool = False) -> list[InstalledApp]:
        """List installed packages.

        Args:
            include_base_service: Include runtimes and bases; otherwise only
                packages of kind "app" are returned.

        Returns:
            Installed packages.

        Raises:
            OperationError: If ll-cli fails or prints unparseable output.
        """
        args = ["list", "--json"]
        if include_base_service:
            args.append("--type=all")
        apps = self._list(args)
        if include_base_service:
            return apps
        return [app for app in apps if app.kind == "app"]

    def search_versions(self, app_id: str) -> list[InstalledApp]:
        """List every installed version of an application.

        Args:
            app_id: Application id, also matched against package names.

        Returns:
            Installed packages matching the id.
        """
        logger.info("Searching installed versions of %s", app_id)
        apps = [
            app
            for app in self._list(["list", "--json", "--type=all"])
            if app.app_id == app_id or app.name == app_id
        ]
        for app in apps:
            logger.debug("Found %s version %s (%s, %s)", app.ident, app.version, app.channel, app.module)
        logger.info("Found %d installed versions of %s", len(apps), app_id)
        return apps

    def kill_app(self, app_id: str) -> str:
        self._run(["kill", app_id])
        return f"Successfully stopped {app_id}"

    def uninstall(self, app_id: str, version: str) -> str:
        """Stop an application and uninstall one of its versions.

        Args:
            app_id: Application id.
            version: Version to remove.

        Returns:
            Confirmation text.

        Raises:
            OperationError: If the app cannot be stopped or uninstalled.
        """
        logger.info("Stopping %s before uninstall", app_id)
        try:
            self.kill_app(app_id)
        except OperationError as e:
            raise OperationError(
                f"Uninstall failed, stop the application first. Details: {e}"
            ) from e

        self._run(["uninstall", f"{app_id}/{version}"])
        return f"Successfully uninstalled {app_id} version {version}"

    def run_app(self, app_id: str) -> str:
        """Launch an application and return without waiting for it.

        Raises:
            OperationError: If ll-cli could not be started.
        """
        command = [*self.config.tool_command, "run", app_id]
        logger.info("Launching %s", app_id)
        try:
            subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=tool_environment(),
                start_new_session=True,
            )
        except OSError as e:
            raise OperationError(f"Failed to execute 'll-cli run': {e}") from e
        return f"Successfully launched {app_id}"

    def prune(self) -> str:
        """Remove runtimes and bases no longer used by any application."""
        stdout = self._run(["prune"]).strip()
        return stdout or "Prune completed"

    def _list(self, args: list[str]) -> list[InstalledApp]:
        output = self._run(args).strip()
        if not output:
            return []
        try:
            items = json.loads(output)
            return [InstalledApp.model_validate(item) for item in items]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise OperationError(f"Failed to parse ll-cli {args[0]} output: {e}") from e

    def _run(self, args: list[str]) -> str:
        """Run ll-cli to completion.

        Returns:
            The command's stdout.

        Raises:
            OperationError: If the command cannot start or exits non-zero.
        """
        command = [*self.config.tool_command, *args]
        logger.debug("Executing: %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=tool_environment(),
            )
        except OSError as e:
            raise OperationError(f"Failed to execute 'll-cli {args[0]}': {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.warning("ll-cli %s failed (%s): %s", args[0], result.returncode, stderr)
            raise OperationError(f"ll-cli {args[0]} command failed: {stderr}")
        return result.stdout
