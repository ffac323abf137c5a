"""
Legacy data source config migration.

Older configs used ``engine`` instead of ``clusterName`` and kept introspection
settings, attribute overrides and default splits inside an ``options`` bag.
``migrate_legacy_config`` turns such a config into the canonical shape in one
pure step, before validation. It either translates every legacy field it
recognizes or raises ConfigError; the input dict is never modified.
"""

import copy
from typing import Any

import structlog

from datacube.core.errors import ConfigError
from datacube.core.naming import make_title

logger = structlog.get_logger(__name__)

DEFAULT_INTROSPECTION = "autofill-all"
DEFAULT_REFRESH_RULE = {"rule": "query", "refresh": "PT1M"}

# Options that only ever appeared in the legacy shape
LEGACY_ONLY_OPTIONS = frozenset({"skipIntrospection", "disableAutofill", "attributeOverrides", "defaultSplits"})

# Options still recognized after migration; kept in the reduced options bag
RETAINED_OPTIONS = frozenset({"priority", "druidContext"})


def is_legacy_config(raw: dict[str, Any]) -> bool:
    """True when the config carries ``engine`` or a legacy-only ``options`` key."""
    if "engine" in raw:
        return True
    options = raw.get("options")
    return isinstance(options, dict) and any(key in LEGACY_ONLY_OPTIONS for key in options)


def _split_names(value: Any, data_source: str) -> list[str]:
    if isinstance(value, str):
        return [name.strip() for name in value.split(",") if name.strip()]
    if isinstance(value, list) and all(isinstance(name, str) for name in value):
        return list(value)
    raise ConfigError(f"unrecognized legacy option 'defaultSplits' value {value!r} in data source '{data_source}'")


def _migrate_dimension(dimension: dict[str, Any]) -> dict[str, Any]:
    migrated = dict(dimension)
    name = migrated.get("name", "")
    if not migrated.get("title"):
        migrated["title"] = make_title(name)
    if migrated.get("expression") is None:
        migrated["expression"] = f"${name}"
    return migrated


def _migrate_measure(measure: dict[str, Any]) -> dict[str, Any]:
    migrated = dict(measure)
    if not migrated.get("title"):
        migrated["title"] = make_title(migrated.get("name", ""))
    return migrated


def migrate_legacy_config(raw: dict[str, Any], default_introspection: str = DEFAULT_INTROSPECTION) -> dict[str, Any]:
    """
    Translate a legacy data source config into the canonical shape.

    Args:
        raw: Legacy config dict (not modified)
        default_introspection: Strategy used when the legacy config does not skip introspection

    Returns:
        New canonical config dict

    Raises:
        ConfigError: If the shape is ambiguous or carries an unrecognized legacy field
    """
    config = copy.deepcopy(raw)
    name = config.get("name", "<unnamed>")

    if "engine" in config:
        engine = config.pop("engine")
        cluster_name = config.get("clusterName")
        if cluster_name is not None and cluster_name != engine:
            raise ConfigError(
                f"data source '{name}' has both 'engine' ({engine}) and 'clusterName' ({cluster_name})"
            )
        config["clusterName"] = engine

    options = config.pop("options", None) or {}
    if not isinstance(options, dict):
        raise ConfigError(f"'options' must be a mapping in data source '{name}'")

    unrecognized = sorted(key for key in options if key not in LEGACY_ONLY_OPTIONS | RETAINED_OPTIONS)
    if unrecognized:
        raise ConfigError(f"unrecognized legacy option '{unrecognized[0]}' in data source '{name}'")

    skip_introspection = bool(options.get("skipIntrospection"))
    disable_autofill = bool(options.get("disableAutofill"))
    if "introspection" in config and ("skipIntrospection" in options or "disableAutofill" in options):
        raise ConfigError(
            f"data source '{name}' sets 'introspection' together with legacy option "
            f"'{'skipIntrospection' if 'skipIntrospection' in options else 'disableAutofill'}'"
        )
    if "introspection" not in config:
        if skip_introspection:
            config["introspection"] = "none"
        elif disable_autofill:
            config["introspection"] = "no-autofill"
        else:
            config["introspection"] = default_introspection

    if "attributeOverrides" in options:
        if "attributeOverrides" in config:
            raise ConfigError(f"data source '{name}' sets 'attributeOverrides' both top-level and in 'options'")
        config["attributeOverrides"] = options["attributeOverrides"]

    if "defaultSplits" in options:
        if "defaultSplits" in config:
            raise ConfigError(f"data source '{name}' sets 'defaultSplits' both top-level and in 'options'")
        config["defaultSplits"] = [
            {"expression": {"op": "ref", "name": split_name}}
            for split_name in _split_names(options["defaultSplits"], name)
        ]

    retained = {key: value for key, value in options.items() if key in RETAINED_OPTIONS}
    if retained:
        config["options"] = retained

    config["dimensions"] = [_migrate_dimension(d) for d in config.get("dimensions") or []]
    config["measures"] = [_migrate_measure(m) for m in config.get("measures") or []]

    if not config.get("defaultSortMeasure") and config["measures"]:
        config["defaultSortMeasure"] = config["measures"][0].get("name")

    if not config.get("refreshRule"):
        config["refreshRule"] = dict(DEFAULT_REFRESH_RULE)

    logger.info(
        "legacy_config_migrated",
        data_source=name,
        introspection=config["introspection"],
        retained_options=sorted(retained),
    )
    return config
