"""Unified configuration management for SetupDeck."""

from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from setupdeck.lib.paths import (
    get_default_config_file,
    get_setupdeck_data_dir,
)
from setupdeck.lib.yaml_utils import load_yaml_file, merge_yaml_configs


class SetupDeckConfig(BaseSettings):
    """SetupDeck configuration with environment variable support."""

    # Application settings
    debug: bool = Field(default=False)
    data_dir: Path = Field(default_factory=get_setupdeck_data_dir)
    catalog_path: Optional[Path] = Field(default=None)

    # Execution lanes and limits
    max_parallel: int = Field(default=1, ge=1, le=16)
    unit_timeout: Optional[float] = Field(default=None, gt=0)
    grace_period: float = Field(default=5.0, ge=0.0)
    poll_interval: float = Field(default=0.05, gt=0.0, le=5.0)
    output_limit: int = Field(default=64 * 1024, ge=1024)
    mark_queued: bool = Field(default=False)

    # Catalog validation
    validate_preconditions: bool = Field(default=True)

    # State persistence
    persist_state: bool = Field(default=False)
    state_file: Optional[Path] = Field(default=None)

    # Front-end behaviour
    skip_confirmation: bool = Field(default=False)
    bypass_root: bool = Field(default=False)
    auto_execute: list[str] = Field(default_factory=list)
    save_logs: bool = Field(default=False)

    # Logging configuration
    log_level: str = Field(default="WARNING")
    log_file: Optional[Path] = Field(default=None)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="SETUPDECK_",
        validate_assignment=True,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level = v.upper()
        if level not in allowed:
            raise ValueError(f"log_level must be one of: {sorted(allowed)}")
        return level

    @field_validator("data_dir", "catalog_path", "state_file", "log_file")
    @classmethod
    def expand_path(cls, v: Optional[Path]) -> Optional[Path]:
        """Expand user home in configured paths."""
        if v is None:
            return v
        return Path(v).expanduser()

    @property
    def logs_dir(self) -> Path:
        """Get logs directory."""
        return self.data_dir / "logs"

    @property
    def effective_state_file(self) -> Path:
        """Get the file execution state is persisted to."""
        return self.state_file or (self.data_dir / "state.json")

    def ensure_directories(self) -> None:
        """Create the data and logs directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


def load_config(config_file: Optional[Path] = None, **overrides: Any) -> SetupDeckConfig:
    """Build configuration from a YAML file, the environment and overrides.

    Precedence (highest first): explicit overrides, constructor-level values
    from the YAML file, environment variables, field defaults. The YAML file
    defaults to ``~/.config/setupdeck/config.yaml`` and is optional.
    """
    path = config_file or get_default_config_file()
    file_values = load_yaml_file(Path(path)) or {}
    if not isinstance(file_values, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    explicit = {key: value for key, value in overrides.items() if value is not None}
    return SetupDeckConfig(**merge_yaml_configs(file_values, explicit))


# Global configuration instance, created on first use
_config: Optional[SetupDeckConfig] = None


def get_config() -> SetupDeckConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: SetupDeckConfig) -> SetupDeckConfig:
    """Install an already-built configuration as the global instance."""
    global _config
    _config = config
    return _config


def reload_config() -> SetupDeckConfig:
    """Reload configuration from environment and files."""
    global _config
    _config = load_config()
    return _config
