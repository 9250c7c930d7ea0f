"""Persistent installer configuration."""

from __future__ import annotations

import json
import shlex
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from linglong_installer.exceptions import ConfigError
from linglong_installer.state_machine import PROGRESS_TIMEOUT_SECS

# Default configuration location
CONFIG_DIR = Path.home() / ".linglong-installer"

DEFAULT_TOOL_COMMAND = ["ll-cli"]
DEFAULT_CANCEL_COMMAND = ["pkexec", "killall", "-15", "ll-package-manager", "ll-cli"]


class InstallerConfig(BaseModel):
    """Settings for driving ll-cli."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    tool_command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TOOL_COMMAND), alias="toolCommand"
    )
    progress_timeout_secs: float = Field(
        default=PROGRESS_TIMEOUT_SECS, gt=0, alias="progressTimeoutSecs"
    )
    poll_interval_secs: float = Field(default=0.1, gt=0, alias="pollIntervalSecs")
    cancel_grace_secs: float = Field(default=10.0, ge=0, alias="cancelGraceSecs")
    cancel_command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CANCEL_COMMAND), alias="cancelCommand"
    )
    cancel_helper_timeout_secs: float = Field(
        default=60.0, gt=0, alias="cancelHelperTimeoutSecs"
    )


# CLI key -> model field
SETTABLE_KEYS: dict[str, str] = {
    "tool-command": "tool_command",
    "progress-timeout": "progress_timeout_secs",
    "poll-interval": "poll_interval_secs",
    "cancel-grace": "cancel_grace_secs",
    "cancel-command": "cancel_command",
    "cancel-helper-timeout": "cancel_helper_timeout_secs",
}


class ConfigManager:
    """Loads and saves the installer configuration file."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize the config manager.

        Args:
            config_dir: Directory for the config file. Defaults to ~/.linglong-installer.

        Note:
            Prefer using factory methods `create()` or `create_default()` for construction.
        """
        self.config_dir = config_dir or CONFIG_DIR
        self.config_file = self.config_dir / "config.json"

    @classmethod
    def create(cls, config_dir: Path) -> ConfigManager:
        """Create a config manager with a custom directory."""
        return cls(config_dir=config_dir)

    @classmethod
    def create_default(cls) -> ConfigManager:
        """Create a config manager using ~/.linglong-installer."""
        return cls()

    def ensure_config_dir(self) -> None:
        """Create config directory if it doesn't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load(self) -> InstallerConfig:
        """Load configuration from disk.

        Returns:
            The stored configuration, or defaults when no file exists.

        Raises:
            ConfigError: If the file is not valid configuration JSON.
        """
        if not self.config_file.exists():
            return InstallerConfig()

        try:
            data = json.loads(self.config_file.read_text())
            return InstallerConfig.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Invalid configuration in {self.config_file}: {e}") from e

    def save(self, config: InstallerConfig) -> None:
        """Save configuration to disk.

        Args:
            config: Configuration to save.
        """
        self.ensure_config_dir()
        data = config.model_dump(by_alias=True)
        self.config_file.write_text(json.dumps(data, indent=2))

    def set_value(self, key: str, value: str) -> InstallerConfig:
        """Update one setting from its CLI string form and persist it.

        Command settings are split with shell quoting rules; an empty
        cancel command disables the elevated kill helper.

        Args:
            key: CLI key, one of SETTABLE_KEYS.
            value: Raw string value.

        Returns:
            The updated configuration.

        Raises:
            ConfigError: If the key is unknown or the value is invalid.
        """
        field = SETTABLE_KEYS.get(key)
        if field is None:
            raise ConfigError(f"Unknown configuration key: {key}")

        parsed: Any = value
        if field.endswith("_command"):
            try:
                parsed = shlex.split(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {key}: {e}") from e
        if field == "tool_command" and not parsed:
            raise ConfigError("tool-command cannot be empty")

        config = self.load()
        try:
            setattr(config, field, parsed)
        except ValidationError as e:
            raise ConfigError(f"Invalid value for {key}: {value}") from e
        self.save(config)
        return config
