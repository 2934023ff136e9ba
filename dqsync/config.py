"""
Configuration management for dqsync.

Loads $DQSYNC_HOME/config.yaml (default ~/.config/dqsync/config.yaml).
An optional env_file is loaded with python-dotenv before any client is
built, so GOOGLE_APPLICATION_CREDENTIALS and friends can live there.
"""

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from dqsync.errors import ConfigError

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
VALID_LOG_FORMATS = ("structured", "pretty")


def get_dqsync_home() -> Path:
    """Return the dqsync config directory ($DQSYNC_HOME or ~/.config/dqsync)."""
    return Path(os.environ.get("DQSYNC_HOME", "~/.config/dqsync")).expanduser()


@dataclass(frozen=True)
class DqsyncConfig:
    """Settings for the BigQuery backends and the reconciliation loop."""

    project: Optional[str] = None
    dataset: str = "dq"
    location: Optional[str] = None
    definitions_table: str = "check_definitions"
    changes_table: str = "check_definition_changes"
    jobs_table: str = "generated_jobs"
    results_table: str = "check_results"
    max_workers: int = 4
    poll_interval_seconds: float = 30.0
    batch_limit: Optional[int] = None
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def __post_init__(self):
        if not self.dataset:
            raise ConfigError("dataset is required")
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigError(f"max_workers must be a positive integer, got {self.max_workers!r}")
        if not isinstance(self.poll_interval_seconds, (int, float)) or self.poll_interval_seconds <= 0:
            raise ConfigError(
                f"poll_interval_seconds must be a positive number, got {self.poll_interval_seconds!r}"
            )
        if self.batch_limit is not None and (not isinstance(self.batch_limit, int) or self.batch_limit < 1):
            raise ConfigError(f"batch_limit must be a positive integer, got {self.batch_limit!r}")
        if str(self.log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}")
        if self.log_format not in VALID_LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {', '.join(VALID_LOG_FORMATS)}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DqsyncConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config key(s): {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def table_path(self, table: str) -> str:
        """Dotted path of a table in the configured dataset."""
        if self.project:
            return f"{self.project}.{self.dataset}.{table}"
        return f"{self.dataset}.{table}"

    @property
    def results_table_path(self) -> str:
        return self.table_path(self.results_table)

    @property
    def log_file_path(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None


def default_config_dict(home: Path) -> dict[str, Any]:
    """Defaults written by `dqsync init`."""
    defaults = DqsyncConfig(env_file=str(home / ".env"), log_file=str(home / "logs" / "dqsync.log"))
    return defaults.to_dict()


def load_config(config_path: Optional[Path] = None) -> DqsyncConfig:
    """
    Load dqsync configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to $DQSYNC_HOME/config.yaml

    Returns:
        DqsyncConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the file is not valid YAML or has invalid values
    """
    if config_path is None:
        config_path = get_dqsync_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"dqsync config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    config = DqsyncConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return config
