"""
Configuration loader for tasksync.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from ..core.exceptions import ConfigError


logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "storage": {
        "db_path": ".tasksync/tasksync.db",
    },
    "snapshot": {
        "path": ".tasksync/state.json",
        "canonical": True,
        "include_events": False,
        "stamp_generated_at": False,
    },
    "patch": {
        "strict": False,
        "strict_ids": False,
        "summary_format": "text",
    },
}

TRUE_VALUES = {"1", "true", "yes", "on"}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


class TaskSyncConfig:
    """
    Configuration for tasksync.

    Loads a YAML configuration file over built-in defaults, then applies
    environment variable overrides:
        TASKSYNC_DB_PATH        -> storage.db_path
        TASKSYNC_SNAPSHOT_PATH  -> snapshot.path
        TASKSYNC_STRICT         -> patch.strict
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        self.config = self._load_config() if self.config_path else copy.deepcopy(DEFAULT_CONFIG)
        self._apply_env_overrides()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise ConfigError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config root must be a mapping: {self.config_path}")

        return _merge(DEFAULT_CONFIG, loaded)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        db_path = os.environ.get("TASKSYNC_DB_PATH")
        if db_path:
            self.config.setdefault("storage", {})["db_path"] = db_path

        snapshot_path = os.environ.get("TASKSYNC_SNAPSHOT_PATH")
        if snapshot_path:
            self.config.setdefault("snapshot", {})["path"] = snapshot_path

        strict = os.environ.get("TASKSYNC_STRICT")
        if strict:
            self.config.setdefault("patch", {})["strict"] = strict.strip().lower() in TRUE_VALUES

    @property
    def db_path(self) -> Path:
        return Path(self.get("storage.db_path"))

    @property
    def snapshot_path(self) -> Path:
        return Path(self.get("snapshot.path"))

    def get_snapshot_config(self) -> Dict[str, Any]:
        """Get snapshot export configuration."""
        return self.config.get("snapshot", {})

    def get_patch_config(self) -> Dict[str, Any]:
        """Get patch handling configuration."""
        return self.config.get("patch", {})

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key, e.g. "patch.strict"."""
        value = self.config
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default
