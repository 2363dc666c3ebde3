"""
Configuration loader for modquery.

Defaults come from an optional YAML file (`~/.modquery.yaml` or --config) and
are overridden by MODQUERY_* environment variables.
"""
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from modquery.query.options import DEFAULT_MAX_PATHS, DEFAULT_MAX_VISITS


CHARSETS = ('utf8', 'ascii')
OUTPUT_FORMATS = ('text', 'json')
DEFAULT_CONFIG_PATH = Path.home() / ".modquery.yaml"


@dataclass(frozen=True)
class ModqueryConfig:
    """Resolved modquery settings."""
    snapshot_path: Optional[Path] = None
    charset: str = 'utf8'
    output: str = 'text'
    max_paths: int = DEFAULT_MAX_PATHS
    max_visits: int = DEFAULT_MAX_VISITS
    log_level: str = 'WARNING'
    repo_rules_url: Optional[str] = None
    repo_rules_token: Optional[str] = None

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> 'ModqueryConfig':
        """
        Load configuration from a YAML file.

        Args:
            yaml_path: Path to YAML config file

        Returns:
            ModqueryConfig instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If a value is invalid
        """
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config not found: {yaml_path}")

        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config in {yaml_path}: expected a mapping, got {type(data).__name__}")

        unknown = sorted(set(data) - set(cls.__dataclass_fields__))
        if unknown:
            raise ValueError(f"Unknown fields in {yaml_path}: {', '.join(unknown)}")

        return cls()._with_values(data, source=str(yaml_path))

    def with_env(self, environ: Optional[Dict[str, str]] = None) -> 'ModqueryConfig':
        """Return a copy overridden by MODQUERY_* environment variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in self.__dataclass_fields__:
            env_name = f"MODQUERY_{name.upper()}"
            if environ.get(env_name):
                values[name] = environ[env_name]
        return self._with_values(values, source="environment")

    def _with_values(self, values: Dict[str, Any], source: str) -> 'ModqueryConfig':
        changes: Dict[str, Any] = {}
        for name, value in values.items():
            if value is None:
                continue
            if name == 'snapshot_path':
                changes[name] = Path(str(value)).expanduser()
            elif name in ('max_paths', 'max_visits'):
                try:
                    number = int(value)
                except (TypeError, ValueError):
                    raise ValueError(f"Invalid {name} in {source}: {value!r}") from None
                if number < 1:
                    raise ValueError(f"Invalid {name} in {source}: must be at least 1")
                changes[name] = number
            elif name == 'charset':
                if str(value).lower() not in CHARSETS:
                    raise ValueError(f"Invalid charset in {source}: {value!r} (choose from {', '.join(CHARSETS)})")
                changes[name] = str(value).lower()
            elif name == 'output':
                if str(value).lower() not in OUTPUT_FORMATS:
                    raise ValueError(f"Invalid output in {source}: {value!r} (choose from {', '.join(OUTPUT_FORMATS)})")
                changes[name] = str(value).lower()
            else:
                changes[name] = str(value).upper() if name == 'log_level' else value
        return replace(self, **changes)


def load_config(config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> ModqueryConfig:
    """
    Load configuration.

    An explicit config_path must exist; the default path is optional.
    """
    if config_path is not None:
        config = ModqueryConfig.from_yaml(Path(config_path))
    elif DEFAULT_CONFIG_PATH.exists():
        config = ModqueryConfig.from_yaml(DEFAULT_CONFIG_PATH)
    else:
        config = ModqueryConfig()
    return config.with_env(environ)
