"""
Configuration loader for sqlsnap.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

try:
    import yaml
except ImportError:
    yaml = None

from ..core.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {
        "backend": "sqlserver",
        "sqlserver": {
            "host": "localhost",
            "port": 1433,
            "username": "sa",
            "password": None,
            "driver": "ODBC Driver 18 for SQL Server",
            "trust_server_certificate": True,
            "connection_string": None,
            "login_timeout": 15,
            "command_timeout": 0,
        },
    },
    "snapshots": {
        "base_path": "/var/opt/mssql/snapshots",
        "max_per_group": 9,
        "auto_create_checkpoint": True,
        "checkpoint_label": "Automatic checkpoint",
    },
    "metadata": {
        "backend": "sqlite",
        "path": "local/state/sqlsnap.db",
    },
    "history": {
        "max_entries": 100,
    },
    "logging": {
        "level": "INFO",
        "structured": False,
    },
    "groups": [],
}


# (env var, dotted key, cast)
ENV_OVERRIDES = [
    ("SQLSNAP_SQLSERVER_CONN_STR", "engine.sqlserver.connection_string", str),
    ("SQLSNAP_SQLSERVER_HOST", "engine.sqlserver.host", str),
    ("SQLSNAP_SQLSERVER_PORT", "engine.sqlserver.port", int),
    ("SQLSNAP_SQLSERVER_USER", "engine.sqlserver.username", str),
    ("MSSQL_SA_PASSWORD", "engine.sqlserver.password", str),
    ("SQLSNAP_SQLSERVER_PASSWORD", "engine.sqlserver.password", str),
    ("SQLSNAP_SQLSERVER_DRIVER", "engine.sqlserver.driver", str),
    ("SQLSNAP_SNAPSHOT_PATH", "snapshots.base_path", str),
    ("SQLSNAP_METADATA_PATH", "metadata.path", str),
]


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SnapshotConfig:
    """
    Configuration for snapshot management.

    Loads a YAML file over the built-in defaults, then applies environment
    variable overrides. SQLSNAP_SQLSERVER_PASSWORD wins over MSSQL_SA_PASSWORD.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        if self.config_path:
            self.config = _merge(DEFAULT_CONFIG, self._load_config())
        else:
            self.config = copy.deepcopy(DEFAULT_CONFIG)
        self._apply_env_overrides()

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "SnapshotConfig":
        """Build a config from a dict merged over the defaults (no env overrides)."""
        config = cls.__new__(cls)
        config.config_path = None
        config.config = _merge(DEFAULT_CONFIG, values)
        return config

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if yaml is None:
            raise ConfigurationError(
                "pyyaml is required for config loading. "
                "Install with: pip install pyyaml"
            )

        if not self.config_path.exists():
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is not None and not isinstance(config, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {self.config_path}")
        return config or {}

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        for env_var, key, cast in ENV_OVERRIDES:
            raw = os.environ.get(env_var)
            if not raw:
                continue
            try:
                value = cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {raw!r}") from e
            self.set(key, value)

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dotted key."""
        keys = key.split(".")
        section = self.config
        for k in keys[:-1]:
            section = section.setdefault(k, {})
        section[keys[-1]] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def get_engine_config(self) -> Dict[str, Any]:
        """Get engine connection configuration."""
        return self.config.get("engine", {})

    def get_sqlserver_config(self) -> Dict[str, Any]:
        """Get the engine.sqlserver section."""
        return self.get_engine_config().get("sqlserver", {})

    def get_snapshot_config(self) -> Dict[str, Any]:
        """Get snapshot lifecycle configuration."""
        return self.config.get("snapshots", {})

    def get_metadata_config(self) -> Dict[str, Any]:
        """Get metadata store configuration."""
        return self.config.get("metadata", {})

    def get_logging_config(self) -> Dict[str, Any]:
        return self.config.get("logging", {})

    def get_groups(self) -> List[Dict[str, Any]]:
        """Get the database groups declared in configuration."""
        return self.config.get("groups") or []

    @property
    def snapshot_base_path(self) -> str:
        return self.get("snapshots.base_path", DEFAULT_CONFIG["snapshots"]["base_path"])

    @property
    def max_per_group(self) -> int:
        return int(self.get("snapshots.max_per_group", 9))

    @property
    def auto_create_checkpoint(self) -> bool:
        value = self.get("snapshots.auto_create_checkpoint", True)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    @property
    def checkpoint_label(self) -> str:
        return self.get("snapshots.checkpoint_label", "Automatic checkpoint")

    @property
    def history_max_entries(self) -> int:
        return int(self.get("history.max_entries", 100))
