"""Configuration management with hierarchical loading."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from taskledger.infrastructure.database import get_data_dir, get_default_db_path
from taskledger.infrastructure.logger import get_logger

logger = get_logger(__name__)


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    database_path: Path | None = Field(
        default=None,
        description="SQLite file to use (default: $XDG_DATA_HOME/taskledger/taskledger.db)",
    )


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.taskledger/config.yaml)
        3. User overrides (~/.taskledger/config.yaml)
        4. Project-local overrides (.taskledger/local.yaml)
        5. Environment variables (TASKLEDGER_* prefix)

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}

        for path in (
            self.project_root / ".taskledger" / "config.yaml",
            Path.home() / ".taskledger" / "config.yaml",
            self.project_root / ".taskledger" / "local.yaml",
        ):
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        logger.debug("config_loaded", project_root=str(self.project_root))
        return self._config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with TASKLEDGER_ prefix."""
        env_mappings = {
            "TASKLEDGER_LOG_LEVEL": "log_level",
            "TASKLEDGER_DB_PATH": "database_path",
        }

        for env_var, key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                config_dict[key] = value

        return config_dict

    def get_database_path(self) -> Path:
        """Get path to SQLite database."""
        config = self.load_config()
        if config.database_path is not None:
            config.database_path.parent.mkdir(parents=True, exist_ok=True)
            return config.database_path
        return get_default_db_path()

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = get_data_dir() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
