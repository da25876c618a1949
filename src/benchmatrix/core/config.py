"""
Configuration Management

Immutable dotted-key configuration store built from layered YAML files,
command-line overrides and environment variable overrides, plus the
dataclasses describing the engine's own run and logging settings.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import yaml

from .exceptions import InvalidConfigurationError, UsageError
from .tokenize import escape_arg

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "default_config.yaml"
USER_CONFIG_PATH = Path.home() / ".benchmatrix" / "config.yaml"

# Environment variables that override single keys, applied last
ENV_OVERRIDES = {
    "BENCHMATRIX_LOG_LEVEL": "logging.level",
    "BENCHMATRIX_TRIAL_TIMEOUT": "run.timeout",
}


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    console_level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = "logs/benchmatrix.log"
    max_size: str = "10MB"
    backup_count: int = 5
    json: bool = False


@dataclass(frozen=True)
class RunConfig:
    """Settings for a single pass over the experiment matrix."""
    timeout_seconds: float = 300.0
    max_retries: int = 1
    max_parallel: int = 1
    worker_module: str = "benchmatrix.worker"
    terminate_grace_seconds: float = 5.0


class ConfigStore(Mapping):
    """
    Immutable mapping from dotted configuration keys to string values.

    Sub-views share the same semantics: ``store.subgroup("vm.test")`` maps
    ``vm.test.args`` to ``args``. Stores are never mutated; layering
    produces a new store.
    """

    def __init__(self, properties: Optional[Mapping] = None):
        data: Dict[str, str] = {}
        for key, value in (properties or {}).items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise InvalidConfigurationError(
                    f"Configuration keys and values must be strings, got {key!r}={value!r}",
                    key=str(key)
                )
            data[key] = value
        self._properties = MappingProxyType(data)

    def __getitem__(self, key: str) -> str:
        return self._properties[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._properties)

    def __len__(self) -> int:
        return len(self._properties)

    def __repr__(self) -> str:
        return f"ConfigStore({dict(self._properties)!r})"

    def subgroup(self, prefix: str) -> "ConfigStore":
        """Return the keys below ``prefix.`` with the prefix stripped."""
        lead = prefix + "."
        return ConfigStore({
            key[len(lead):]: value
            for key, value in self._properties.items()
            if key.startswith(lead)
        })

    def options(self, prefix: str) -> Dict[str, str]:
        """Return the option bag stored under ``<prefix>.options.*``."""
        return dict(self.subgroup(prefix + ".options"))

    def child_names(self, prefix: str) -> Set[str]:
        """Return the distinct first key segments below ``prefix.``."""
        return {key.split(".", 1)[0] for key in self.subgroup(prefix)}

    def layered(self, overrides: Mapping) -> "ConfigStore":
        """Return a new store with ``overrides`` applied on top of this one."""
        merged = dict(self._properties)
        merged.update(overrides)
        return ConfigStore(merged)


def flatten_config(data: Any, prefix: str = "") -> Dict[str, str]:
    """
    Flatten a nested YAML document into dotted keys with string values.

    Args:
        data: Parsed YAML mapping (nested or already dotted keys)
        prefix: Key prefix for recursion

    Returns:
        Flat mapping of dotted keys to strings
    """
    if not isinstance(data, dict):
        raise InvalidConfigurationError(
            f"Expected a mapping at '{prefix or '<root>'}', got {type(data).__name__}",
            key=prefix or None
        )

    flat: Dict[str, str] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_config(value, full_key))
        else:
            flat[full_key] = _stringify(value, full_key)
    return flat


def _stringify(value: Any, key: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        parts = []
        for item in value:
            if isinstance(item, (dict, list, tuple)):
                raise InvalidConfigurationError(f"Nested collections are not supported in list '{key}'", key=key)
            parts.append(escape_arg(_stringify(item, key)))
        return " ".join(parts)
    return str(value)


def read_config_file(path: Path) -> Dict[str, str]:
    """Read one YAML configuration layer into flat dotted keys."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise InvalidConfigurationError(f"Cannot read configuration file {path}: {e}", path=str(path))
    except yaml.YAMLError as e:
        raise InvalidConfigurationError(f"Malformed configuration file {path}: {e}", path=str(path))

    if data is None:
        return {}
    return flatten_config(data)


def parse_override(text: str) -> Tuple[str, str]:
    """Parse a ``key=value`` command-line override."""
    key, sep, value = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise UsageError(f"Configuration override must look like key=value, got '{text}'")
    return key, value


def load_config_store(config_path: Optional[Path] = None,
                      overrides: Optional[Iterable[str]] = None,
                      include_user_config: bool = True,
                      environ: Optional[Mapping] = None) -> ConfigStore:
    """
    Build the configuration store from all layers, later layers winning.

    Layers: bundled defaults, ``~/.benchmatrix/config.yaml``, an explicit
    configuration file, ``key=value`` overrides, environment overrides.

    Args:
        config_path: Optional explicit configuration file
        overrides: ``key=value`` strings, typically from ``-C``
        include_user_config: Whether to read the per-user file
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Immutable ConfigStore
    """
    layers: List[Dict[str, str]] = [read_config_file(DEFAULT_CONFIG_PATH)]

    if include_user_config and USER_CONFIG_PATH.exists():
        layers.append(read_config_file(USER_CONFIG_PATH))

    if config_path is not None:
        if not Path(config_path).exists():
            raise UsageError(f"Configuration file not found: {config_path}")
        layers.append(read_config_file(Path(config_path)))

    if overrides:
        layers.append(dict(parse_override(item) for item in overrides))

    layers.append(_apply_env_overrides(os.environ if environ is None else environ))

    merged: Dict[str, str] = {}
    for layer in layers:
        merged.update(layer)
    return ConfigStore(merged)


def _apply_env_overrides(environ: Mapping) -> Dict[str, str]:
    """Collect environment variable overrides into configuration keys."""
    overrides = {}
    for env_var, key in ENV_OVERRIDES.items():
        env_value = environ.get(env_var)
        if env_value:
            overrides[key] = env_value
    return overrides
