"""
Centralized logging configuration.

Configure once at the application entry point, not per module. Modules log
through ``structlog.get_logger(__name__)`` (printed to stdout by structlog's
default logger); the config loader uses stdlib loggers, configured here.
"""

import logging
import sys
from pathlib import Path
from typing import Any

from datacube.core.config_loader import load_logging_config


def _level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    config: dict[str, Any] | None = None,
    config_path: Path | None = None,
) -> bool:
    """
    Configure Python logging for the entire application.

    Idempotent: if the root logger already has handlers nothing is changed.

    Args:
        level: Root level; overrides ``root_level`` from the logging config
        config: Pre-loaded logging config (skips reading ``logging.yaml``)
        config_path: Optional path to the logging config file

    Returns:
        True if logging was configured by this call, False if it already was
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return False

    if config is None:
        config = load_logging_config(config_path)

    logging.basicConfig(
        level=_level(level if level is not None else config["root_level"]),
        format=config["format"],
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for module, module_level in config.get("module_levels", {}).items():
        logging.getLogger(module).setLevel(_level(module_level))

    # Reduce noise
    for module, module_level in config.get("reduce_noise", {}).items():
        logging.getLogger(module).setLevel(_level(module_level))

    return True
