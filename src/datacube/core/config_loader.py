"""Centralized configuration loader for YAML-based configuration.

This module provides functions to load configuration from YAML files with:
- Environment variable overrides (env var → YAML → defaults)
- Type coercion (string to float, bool, int)
- Schema validation using dataclasses
- Graceful degradation (missing files use defaults)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml  # type: ignore

from datacube.core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "DATACUBE_CONFIG_DIR"


def get_config_dir() -> Path:
    """
    Get the configuration directory.

    ``DATACUBE_CONFIG_DIR`` wins when set. Otherwise uses ``<project_root>/config``,
    found by walking up: config_loader.py → core/ → datacube/ → src/ → project_root.

    Returns:
        Path to the config directory (may not exist; loaders fall back to defaults)
    """
    env_dir = os.getenv(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return Path(__file__).parent.parent.parent.parent / "config"


def _coerce_type(value: Any, target_type: type) -> Any:
    """
    Coerce value to target type.

    Handles:
    - String "true"/"false" → bool True/False (case-insensitive)
    - String "12" or "12.0" → int 12

    Args:
        value: Value to coerce
        target_type: Target type (float, bool, int, str)

    Returns:
        Coerced value

    Raises:
        ValueError: If coercion fails
    """
    if value is None:
        return None

    if isinstance(value, target_type):
        return value

    if target_type is bool:
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is float:
        return float(value)

    if target_type is int:
        if isinstance(value, str):
            return int(float(value))
        return int(value)

    if target_type is str:
        return str(value)

    return value


def _is_critical_config(key: str) -> bool:
    """
    Check if a config key is critical (should raise on type coercion failure).

    Worker counts and name-suffix bounds size thread pools and loops; a bad value
    there must not silently fall back.
    """
    critical_patterns = ["workers", "suffix"]
    return any(pattern in key.lower() for pattern in critical_patterns)


def _apply_env_overrides(config: dict[str, Any], env_mapping: dict[str, str]) -> dict[str, Any]:
    """
    Apply environment variable overrides to config.

    Args:
        config: Configuration dictionary
        env_mapping: Mapping of env var names to config keys

    Returns:
        Config with env var overrides applied

    Raises:
        ConfigError: If a critical key can not be coerced
    """
    result = config.copy()
    for env_key, config_key in env_mapping.items():
        env_value = os.getenv(env_key)
        if env_value is None or config_key not in result:
            continue
        target_type = type(result[config_key])
        try:
            result[config_key] = _coerce_type(env_value, target_type)
        except (ValueError, TypeError) as e:
            if _is_critical_config(config_key):
                raise ConfigError(
                    f"Type coercion failed for critical config {env_key}={env_value}: "
                    f"expected {target_type.__name__}. Error: {e}"
                ) from e
            logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")
    return result


def _read_yaml(config_path: Path) -> dict[str, Any] | None:
    """
    Read a YAML mapping, or None when the file does not exist.

    Raises:
        ConfigError: If the YAML is invalid or the top level is not a mapping
    """
    if not config_path.exists():
        logger.debug(f"Config file not found at {config_path}, using defaults")
        return None
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {config_path}, got {type(data).__name__}")
    return data


def _merge_scalars(defaults: dict[str, Any], yaml_data: dict[str, Any], config_path: Path) -> dict[str, Any]:
    config = defaults.copy()
    for key, value in yaml_data.items():
        if key not in defaults:
            logger.warning(f"Unknown config key {key} in {config_path}, ignoring")
            continue
        target_type = type(defaults[key])
        try:
            config[key] = _coerce_type(value, target_type)
        except (ValueError, TypeError) as e:
            if _is_critical_config(key):
                raise ConfigError(
                    f"Type coercion failed for critical config {key}={value}: "
                    f"expected {target_type.__name__}, got {type(value).__name__}. "
                    f"Error: {e}"
                ) from e
            logger.warning(
                f"Failed to coerce YAML value {key}={value} to {target_type.__name__}: {e}, using default"
            )
    return config


@dataclass
class ReconciliationConfigDefaults:
    """Default values for attribute reconciliation and refresh."""

    default_introspection: str = "autofill-all"
    default_aggregate: str = "sum"
    min_token: str = "min"
    max_token: str = "max"
    max_name_suffix: int = 10
    refresh_workers: int = 4

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return {
            "default_introspection": self.default_introspection,
            "default_aggregate": self.default_aggregate,
            "min_token": self.min_token,
            "max_token": self.max_token,
            "max_name_suffix": self.max_name_suffix,
            "refresh_workers": self.refresh_workers,
        }


def load_reconciliation_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load reconciliation config from YAML with env var overrides.

    Precedence: Environment variable → YAML value → Default value

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        dict with the keys of ReconciliationConfigDefaults

    Raises:
        ConfigError: If YAML is invalid or a critical value can not be coerced
    """
    defaults = ReconciliationConfigDefaults().to_dict()

    if config_path is None:
        config_path = get_config_dir() / "reconciliation.yaml"

    yaml_data = _read_yaml(config_path)
    config = _merge_scalars(defaults, yaml_data, config_path) if yaml_data is not None else defaults.copy()

    env_mapping = {
        "DATACUBE_DEFAULT_INTROSPECTION": "default_introspection",
        "DATACUBE_DEFAULT_AGGREGATE": "default_aggregate",
        "DATACUBE_MIN_TOKEN": "min_token",
        "DATACUBE_MAX_TOKEN": "max_token",
        "DATACUBE_MAX_NAME_SUFFIX": "max_name_suffix",
        "DATACUBE_REFRESH_WORKERS": "refresh_workers",
    }
    config = _apply_env_overrides(config, env_mapping)

    if config["refresh_workers"] < 1:
        raise ConfigError(f"refresh_workers must be at least 1 (is {config['refresh_workers']})")
    if config["max_name_suffix"] < 1:
        raise ConfigError(f"max_name_suffix must be at least 1 (is {config['max_name_suffix']})")

    return config


@dataclass
class LoggingConfigDefaults:
    """Default values for logging configuration."""

    root_level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    module_levels: dict[str, str] | None = None
    reduce_noise: dict[str, str] | None = None

    def __post_init__(self) -> None:
        """Initialize default dict values."""
        if self.module_levels is None:
            self.module_levels = {
                "datacube.core.reconciliation": "INFO",
                "datacube.core.registry": "INFO",
                "datacube.visualization": "INFO",
            }
        if self.reduce_noise is None:
            self.reduce_noise = {
                "duckdb": "WARNING",
                "polars": "WARNING",
            }

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return {
            "root_level": self.root_level,
            "format": self.format,
            "module_levels": self.module_levels.copy() if self.module_levels else {},
            "reduce_noise": self.reduce_noise.copy() if self.reduce_noise else {},
        }


def load_logging_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load logging config from YAML.

    ``module_levels`` and ``reduce_noise`` from YAML are merged into the defaults;
    ``DATACUBE_LOG_LEVEL`` overrides ``root_level``.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        dict with keys root_level, format, module_levels, reduce_noise

    Raises:
        ConfigError: If YAML is invalid
    """
    config = LoggingConfigDefaults().to_dict()

    if config_path is None:
        config_path = get_config_dir() / "logging.yaml"

    yaml_data = _read_yaml(config_path) or {}
    for key, value in yaml_data.items():
        if key not in config:
            continue
        if key in ("module_levels", "reduce_noise"):
            if isinstance(value, dict):
                config[key].update(value)
        else:
            config[key] = value

    return _apply_env_overrides(config, {"DATACUBE_LOG_LEVEL": "root_level"})


def load_data_sources_file(config_path: Path) -> dict[str, list[dict[str, Any]]]:
    """
    Load a data sources file.

    The file holds ``dataSources: [...]`` and optionally ``clusters: [...]``.

    Args:
        config_path: Path to the YAML file

    Returns:
        dict with keys ``dataSources`` and ``clusters`` (lists, possibly empty)

    Raises:
        ConfigError: If the file is missing, the YAML is invalid, or a section is not a list
    """
    yaml_data = _read_yaml(config_path)
    if yaml_data is None:
        raise ConfigError(f"Data sources file not found at {config_path}")

    result: dict[str, list[dict[str, Any]]] = {}
    for key in ("dataSources", "clusters"):
        section = yaml_data.get(key) or []
        if not isinstance(section, list):
            raise ConfigError(f"'{key}' in {config_path} must be a list, got {type(section).__name__}")
        result[key] = section

    logger.info(f"Loaded {len(result['dataSources'])} data source configs from {config_path}")
    return result
