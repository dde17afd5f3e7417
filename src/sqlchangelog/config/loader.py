"""
Configuration file loading.

Loads ``config.yaml`` and ``config.{env}.yaml`` from the project directory,
fills in defaults and resolves placeholders.
"""

import copy
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from sqlchangelog.config.resolver import resolve_config
from sqlchangelog.exceptions import ConfigurationError

CONFIG_FILE = "config.yaml"

DEFAULTS: dict[str, Any] = {
    "changelog": {
        "file": "changelog/changelog.sql",
        "dialect": None,
    },
    "target": {
        "connection": "default",
        "schema": None,
    },
    "ledger": {
        "table": "databasechangelog",
        "lock_table": "databasechangeloglock",
    },
    "lock": {
        "stale_after_seconds": 300,
    },
    "run": {
        "fail_fast": True,
        "changeset_timeout_seconds": None,
        "contexts": "",
        "labels": "",
    },
    "connections": {},
    "logging": {
        "level": "INFO",
    },
}


class Config:
    """Project configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data
        # Convenience properties for common config sections
        self.connections = data.get("connections") or {}
        self.changelog = data.get("changelog") or {}
        self.run = data.get("run") or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested.key']."""
        if "." in key:
            if key not in self:
                raise KeyError(f"Config key '{key}' not found")
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            # Return nested dicts as Config objects for chaining
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return False
            value = value[k]
        return True

    def __iter__(self) -> Iterator[str]:
        """Iterate over top-level keys."""
        return iter(self.data)

    def keys(self):
        """Get top-level keys."""
        return self.data.keys()

    def values(self):
        """Get top-level values."""
        return self.data.values()

    def items(self):
        """Get top-level items."""
        return self.data.items()

    def validate(self) -> None:
        """Validate configuration structure and content."""
        errors = []

        for section in ("changelog", "target", "ledger", "lock", "run", "connections", "logging"):
            value = self.data.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Configuration '{section}' must be a mapping, got {type(value).__name__}")

        if not errors:
            if not self.get("changelog.file"):
                errors.append("Configuration 'changelog.file' is required")

            target_conn = self.get("target.connection")
            if target_conn and target_conn not in self.connections:
                errors.append(
                    f"Target connection '{target_conn}' is not defined under 'connections' "
                    f"(defined: {', '.join(sorted(self.connections)) or 'none'})"
                )

            stale_after = self.get("lock.stale_after_seconds")
            if stale_after is not None and (not isinstance(stale_after, (int, float)) or stale_after <= 0):
                errors.append("Configuration 'lock.stale_after_seconds' must be a positive number")

            timeout = self.get("run.changeset_timeout_seconds")
            if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
                errors.append("Configuration 'run.changeset_timeout_seconds' must be a positive number")

        if errors:
            raise ConfigurationError("\n".join(errors), details={"errors": errors})


def load_config(project_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load project configuration.

    Loads config.yaml and config.{env}.yaml over the built-in defaults,
    then substitutes environment variables.

    Args:
        project_path: Path to project root (default: current directory)
        env: Environment name (dev, staging, prod)

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    if project_path is None:
        project_path = Path.cwd()

    base_config_path = project_path / CONFIG_FILE
    if not base_config_path.is_file():
        raise ConfigurationError(
            f"Configuration file not found: {base_config_path}\n"
            f"  Suggestion: Create a {CONFIG_FILE} file in your project root"
        )

    config_data = copy.deepcopy(DEFAULTS)
    _merge_dict(config_data, _read_yaml(base_config_path))

    if env:
        env_config_path = project_path / f"config.{env}.yaml"
        if env_config_path.exists():
            # env overrides base
            _merge_dict(config_data, _read_yaml(env_config_path))

    config = Config(resolve_config(config_data, env or "dev"))
    config.validate()
    return config


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read one YAML mapping, turning parse errors into ConfigurationError."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        raise ConfigurationError(
            f"Error parsing {path.name}{where}:\n"
            f"  {e}\n"
            f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes"
        ) from e
    except PermissionError as e:
        raise ConfigurationError(f"Permission denied reading {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain a mapping, got {type(data).__name__}")
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
