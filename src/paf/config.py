"""Configuration loading for the phone-a-friend server and CLI."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_CONFIG_NAME = "paf.yaml"
DEFAULT_RESPONSE_FILENAME = ".paf-response.md"
DEFAULT_WORKSPACE_DIRECTORY = ".worktrees"
PROMPT_SIZE_WARNING_THRESHOLD = 10 * 1024
MAX_DIFF_BYTES = 10 * 1024 * 1024


class ConfigError(RuntimeError):
    """Raised when the configuration file is missing or invalid."""


class SettingsModel(BaseModel):
    """Base model rejecting unknown keys so typos surface early."""

    model_config = ConfigDict(extra="forbid")


def _relative_parts(value: str, *, field_name: str) -> PurePosixPath:
    candidate = PurePosixPath(value.strip().replace("\\", "/"))
    if not value.strip() or candidate.is_absolute() or ".." in candidate.parts:
        raise ValueError(f"{field_name} must be a relative path inside the repository")
    return candidate


class AgentSettings(SettingsModel):
    """How the external agent CLI is launched."""

    command: str = "copilot"
    extra_args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)
    terminate_grace: float = Field(default=5.0, ge=0)

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("agent.command must not be empty")
        return value.strip()


class WorkspaceSettings(SettingsModel):
    """Layout of the isolated workspaces under the repository root."""

    directory: str = DEFAULT_WORKSPACE_DIRECTORY
    name_prefix: str = "paf"
    branch_prefix: str = "paf/"

    @field_validator("directory")
    @classmethod
    def _directory_is_relative(cls, value: str) -> str:
        return _relative_parts(value, field_name="workspace.directory").as_posix()

    @field_validator("name_prefix")
    @classmethod
    def _prefix_is_simple(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned or "/" in cleaned or "\\" in cleaned:
            raise ValueError("workspace.name_prefix must be a non-empty name without separators")
        return cleaned


class ResponseSettings(SettingsModel):
    """Where the external agent writes its final answer."""

    filename: str = DEFAULT_RESPONSE_FILENAME

    @field_validator("filename")
    @classmethod
    def _filename_is_bare(cls, value: str) -> str:
        candidate = _relative_parts(value, field_name="response.filename")
        if len(candidate.parts) != 1:
            raise ValueError("response.filename must be a bare file name")
        return candidate.as_posix()


class LimitSettings(SettingsModel):
    """Size thresholds applied to prompts and diffs."""

    prompt_warning_chars: int = Field(default=PROMPT_SIZE_WARNING_THRESHOLD, gt=0)
    max_diff_bytes: int = Field(default=MAX_DIFF_BYTES, gt=0)


class LoggingSettings(SettingsModel):
    level: str = "WARNING"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown logging level: {value}")
        return level


class Settings(SettingsModel):
    """Top-level configuration document."""

    agent: AgentSettings = Field(default_factory=AgentSettings)
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    response: ResponseSettings = Field(default_factory=ResponseSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load YAML configuration from disk; ``None`` yields the defaults."""
    if config_path is None:
        return Settings()

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    try:
        return Settings.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {path}:\n{error}") from error


def settings_payload(settings: Settings | None = None) -> Dict[str, Any]:
    """Return ``settings`` (or the defaults) as plain YAML-friendly data."""
    return (settings or Settings()).model_dump(mode="json")


def write_settings(config_path: Path | str, settings: Settings | None = None) -> Path:
    """Persist configuration data to disk with stable formatting."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(settings_payload(settings), handle, sort_keys=False)
    return path


__all__ = [
    "AgentSettings",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_RESPONSE_FILENAME",
    "LimitSettings",
    "LoggingSettings",
    "ResponseSettings",
    "Settings",
    "WorkspaceSettings",
    "load_settings",
    "settings_payload",
    "write_settings",
]
