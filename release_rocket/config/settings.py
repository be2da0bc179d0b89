"""
Configuration for the release-rocket engine and CLI.

Settings come from an optional YAML file plus ``ROCKET_`` environment
variables (nested sections use ``__``, e.g. ``ROCKET_GITHUB__TIMEOUT_SECONDS``).
Per-project GitHub settings (repositories, token, workflow references) are
not part of this file; they are records in the config store.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from release_rocket.exceptions import ConfigurationError


class GitHubSettings(BaseModel):
    """GitHub API client settings."""

    api_base_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    timeout_seconds: int = Field(default=30, ge=1, description="HTTP timeout for API calls")
    run_lookup_delay_seconds: float = Field(
        default=2.0, ge=0.0, description="Wait after a dispatch before looking up the new run"
    )
    validation_cache_ttl_seconds: int = Field(
        default=300, ge=0, description="How long token/repository validation results are reused"
    )


class StoreSettings(BaseModel):
    """Local JSON store used by the CLI."""

    directory: str = Field(default=".rocket/store", description="Directory holding the collections")
    poll_interval_seconds: float = Field(default=5.0, gt=0.0, description="Watch feed polling interval")


class WorkflowSettings(BaseModel):
    """Defaults for workflow dispatch."""

    default_ref: str = Field(default="release", description="Git ref used when a reference has no branch")


class RocketSettings(BaseSettings):
    """Top-level settings.

    Every section has defaults, so an empty YAML file (or none at all) is a
    valid configuration.
    """

    model_config = SettingsConfigDict(
        env_prefix="ROCKET_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    github: GitHubSettings = Field(default_factory=GitHubSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @property
    def store_dir(self) -> Path:
        """Get the store directory as a Path."""
        return Path(self.store.directory)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> RocketSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ``${VAR_NAME}`` and ``${VAR_NAME:-default}``.

        Raises:
            ConfigurationError: If the file is missing, unreadable, not a
                mapping, or fails validation
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Replace ``${VAR}`` / ``${VAR:-default}`` with environment values.

        Comment lines are left untouched.

        Raises:
            ValueError: If a variable without default is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
