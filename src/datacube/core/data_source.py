"""
DataSource - declarative description of a queryable dataset.

A DataSource is built from persisted config (legacy shapes are migrated first),
validated fail-fast for naming problems, and evolves only through
``add_attributes`` when introspection delivers a fresh attribute catalog. Every
operation returns a new immutable value.

Usage:
    from datacube.core.data_source import DataSource

    data_source = DataSource.from_config(
        {
            "name": "wiki",
            "clusterName": "druid",
            "source": "wiki",
            "dimensions": [{"name": "page"}],
            "measures": [{"name": "added", "expression": "$main.sum($added)"}],
        }
    )
    data_source.get_issues()
"""

from collections.abc import Mapping
from types import MappingProxyType
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import structlog

from datacube.core.attribute import Attribute, AttributeType, attributes_from_dicts
from datacube.core.dimension import Dimension
from datacube.core.errors import ConfigError, NamingError, ResolutionError, SynthesisSkipped, ValidationError
from datacube.core.expression import MAIN, Expression, LiteralExpression, RefExpression, resolve
from datacube.core.legacy_migration import (
    DEFAULT_INTROSPECTION,
    DEFAULT_REFRESH_RULE,
    is_legacy_config,
    migrate_legacy_config,
)
from datacube.core.measure import Measure
from datacube.core.naming import assert_no_duplicates, assert_url_safe, make_title
from datacube.core.splits import Splits

if TYPE_CHECKING:
    from datacube.core.reconciliation import AggregatePolicy

logger = structlog.get_logger(__name__)

INTROSPECTION_STRATEGIES = (
    "none",
    "no-autofill",
    "autofill-dimensions-only",
    "autofill-measures-only",
    "autofill-all",
)

REFRESH_RULES = ("fixed", "query", "realtime")

DEFAULT_TIMEZONE = "Etc/UTC"
DEFAULT_DURATION = "P1D"
DEFAULT_FILTER = LiteralExpression(True)

# Cluster name for data sources backed by a local file rather than a cluster
NATIVE_CLUSTER = "native"


def _freeze_options(value: Any) -> Any:
    """Read-only deep copy of an options bag; nested mappings become proxies, lists tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze_options(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_options(item) for item in value)
    return value


def _thaw_options(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw_options(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw_options(item) for item in value]
    return value


@dataclass(frozen=True)
class RefreshRule:
    """How often the max time of a data source is re-queried."""

    rule: str = DEFAULT_REFRESH_RULE["rule"]
    refresh: str = DEFAULT_REFRESH_RULE["refresh"]
    time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = {"rule": self.rule, "refresh": self.refresh}
        if self.time is not None:
            result["time"] = self.time
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RefreshRule":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError(f"refreshRule must be a mapping, got {data!r}")
        rule = data.get("rule", DEFAULT_REFRESH_RULE["rule"])
        if rule not in REFRESH_RULES:
            raise ConfigError(f"unknown refresh rule '{rule}' (expected one of {', '.join(REFRESH_RULES)})")
        return cls(rule=rule, refresh=data.get("refresh", DEFAULT_REFRESH_RULE["refresh"]), time=data.get("time"))


def _optional_names(value: Any, key: str) -> tuple[str, ...] | None:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{key}' must be a list of names")
    return tuple(value)


@dataclass(frozen=True)
class DataSource:
    """
    Aggregate root: dimensions, measures and the physical attribute catalog.

    Dimension and measure order is insertion order and is preserved by every
    transform. ``options`` holds still-recognized extras (e.g. priority).
    """

    name: str
    title: str
    cluster_name: str
    source: str
    description: str = ""
    attributes: tuple[Attribute, ...] = ()
    dimensions: tuple[Dimension, ...] = ()
    measures: tuple[Measure, ...] = ()
    attribute_overrides: tuple[Attribute, ...] = ()
    time_attribute: str | None = None
    default_sort_measure: str | None = None
    default_selected_measures: tuple[str, ...] | None = None
    default_pinned_dimensions: tuple[str, ...] | None = None
    default_splits: Splits = Splits.EMPTY
    introspection: str = DEFAULT_INTROSPECTION
    refresh_rule: RefreshRule = RefreshRule()
    default_timezone: str = DEFAULT_TIMEZONE
    default_duration: str = DEFAULT_DURATION
    default_filter: Expression = DEFAULT_FILTER
    subset_filter: Expression | None = None
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", _freeze_options(self.options))

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_config(cls, raw: dict[str, Any], context: Mapping[str, Any] | None = None) -> "DataSource":
        """
        Build and validate a data source from its persisted config.

        Args:
            raw: Config dict (canonical or legacy shape)
            context: Optional mapping with ``clusters`` (known cluster names) and
                ``default_introspection``

        Returns:
            Validated DataSource

        Raises:
            NamingError: Unsafe or duplicate names
            ValidationError: defaultSortMeasure names no measure
            ConfigError: Malformed config, unknown cluster, unparsable expression
        """
        if not isinstance(raw, dict):
            raise ConfigError(f"data source config must be a mapping, got {type(raw).__name__}")
        context = context or {}
        default_introspection = context.get("default_introspection", DEFAULT_INTROSPECTION)

        if is_legacy_config(raw):
            raw = migrate_legacy_config(raw, default_introspection)

        name = raw.get("name") or ""
        assert_url_safe(name, "data source")

        cluster_name = raw.get("clusterName") or NATIVE_CLUSTER
        clusters = context.get("clusters")
        if clusters is not None and cluster_name != NATIVE_CLUSTER and cluster_name not in clusters:
            raise ConfigError(f"can not find cluster '{cluster_name}' for data source '{name}'")

        introspection = raw.get("introspection") or default_introspection
        if introspection not in INTROSPECTION_STRATEGIES:
            raise ConfigError(
                f"unknown introspection '{introspection}' in data source '{name}' "
                f"(expected one of {', '.join(INTROSPECTION_STRATEGIES)})"
            )

        dimensions = tuple(Dimension.from_dict(d) for d in raw.get("dimensions") or [])
        measures = tuple(Measure.from_dict(m) for m in raw.get("measures") or [])
        measure_names = [measure.name for measure in measures]

        default_sort_measure = raw.get("defaultSortMeasure")
        if default_sort_measure:
            if default_sort_measure not in measure_names:
                raise ValidationError(f"can not find defaultSortMeasure '{default_sort_measure}'")
        else:
            default_sort_measure = measure_names[0] if measure_names else None

        assert_no_duplicates((d.name for d in dimensions), measure_names, name)

        attributes = attributes_from_dicts(raw.get("attributes"))
        seen_attributes: set[str] = set()
        for attribute in attributes:
            if attribute.name in seen_attributes:
                raise NamingError(f"duplicate attribute name '{attribute.name}' found in data source: '{name}'")
            seen_attributes.add(attribute.name)

        time_attribute = raw.get("timeAttribute")
        if not time_attribute:
            time_attribute = next(
                (
                    d.expression.name
                    for d in dimensions
                    if d.is_time and isinstance(d.expression, RefExpression)
                ),
                None,
            )

        raw_filter = raw.get("defaultFilter")
        raw_subset = raw.get("subsetFilter")
        options = raw.get("options") or {}
        if not isinstance(options, dict):
            raise ConfigError(f"'options' must be a mapping in data source '{name}'")

        data_source = cls(
            name=name,
            title=raw.get("title") or make_title(name),
            cluster_name=cluster_name,
            source=raw.get("source") or name,
            description=raw.get("description") or "",
            attributes=attributes,
            dimensions=dimensions,
            measures=measures,
            attribute_overrides=attributes_from_dicts(raw.get("attributeOverrides")),
            time_attribute=time_attribute,
            default_sort_measure=default_sort_measure,
            default_selected_measures=_optional_names(raw.get("defaultSelectedMeasures"), "defaultSelectedMeasures"),
            default_pinned_dimensions=_optional_names(raw.get("defaultPinnedDimensions"), "defaultPinnedDimensions"),
            default_splits=Splits.from_config(raw.get("defaultSplits")),
            introspection=introspection,
            refresh_rule=RefreshRule.from_dict(raw.get("refreshRule")),
            default_timezone=raw.get("defaultTimezone") or DEFAULT_TIMEZONE,
            default_duration=raw.get("defaultDuration") or DEFAULT_DURATION,
            default_filter=Expression.from_config(raw_filter) if raw_filter is not None else DEFAULT_FILTER,
            subset_filter=Expression.from_config(raw_subset) if raw_subset is not None else None,
            options=dict(options),
        )
        logger.debug(
            "data_source_loaded",
            data_source=name,
            dimensions=len(dimensions),
            measures=len(measures),
            introspection=introspection,
        )
        return data_source

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the canonical persisted shape. Empty optional collections are omitted."""
        result: dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "clusterName": self.cluster_name,
            "source": self.source,
            "introspection": self.introspection,
            "refreshRule": self.refresh_rule.to_dict(),
            "defaultTimezone": self.default_timezone,
            "defaultDuration": self.default_duration,
            "defaultFilter": self.default_filter.to_dict(),
            "subsetFilter": self.subset_filter.to_dict() if self.subset_filter is not None else None,
        }
        if self.time_attribute:
            result["timeAttribute"] = self.time_attribute
        if self.default_sort_measure:
            result["defaultSortMeasure"] = self.default_sort_measure
        if self.attributes:
            result["attributes"] = [a.to_dict() for a in self.attributes]
        if self.attribute_overrides:
            result["attributeOverrides"] = [a.to_dict() for a in self.attribute_overrides]
        result["dimensions"] = [d.to_dict() for d in self.dimensions]
        result["measures"] = [m.to_dict() for m in self.measures]
        if self.default_splits:
            result["defaultSplits"] = self.default_splits.to_list()
        if self.default_selected_measures is not None:
            result["defaultSelectedMeasures"] = list(self.default_selected_measures)
        if self.default_pinned_dimensions is not None:
            result["defaultPinnedDimensions"] = list(self.default_pinned_dimensions)
        if self.options:
            result["options"] = _thaw_options(self.options)
        return result

    # =========================================================================
    # Lookups
    # =========================================================================

    def attribute_map(self) -> dict[str, Attribute]:
        return {attribute.name: attribute for attribute in self.attributes}

    def get_attribute(self, name: str) -> Attribute | None:
        return next((a for a in self.attributes if a.name == name), None)

    def get_dimension(self, name: str) -> Dimension | None:
        return next((d for d in self.dimensions if d.name == name), None)

    def get_measure(self, name: str) -> Measure | None:
        return next((m for m in self.measures if m.name == name), None)

    def get_dimension_by_expression(self, expression: Expression) -> Dimension | None:
        return next((d for d in self.dimensions if d.expression.structurally_equals(expression)), None)

    def get_measure_by_expression(self, expression: Expression) -> Measure | None:
        return next((m for m in self.measures if m.expression.structurally_equals(expression)), None)

    def get_time_dimension(self) -> Dimension | None:
        return next((d for d in self.dimensions if d.is_time), None)

    def is_time_attribute(self, expression: Expression) -> bool:
        return isinstance(expression, RefExpression) and expression.name == self.time_attribute

    def names(self) -> set[str]:
        """Every name in the shared dimension/measure namespace."""
        return {d.name for d in self.dimensions} | {m.name for m in self.measures}

    # =========================================================================
    # Validation
    # =========================================================================

    def expand_dimension_expression(self, dimension: Dimension) -> Expression:
        """
        Inline references to other dimensions.

        A reference that names another dimension (and no catalog attribute) is
        replaced by that dimension's expression, recursively, so chained
        dimensions bottom out at physical columns. Cycles stop expanding.
        """
        catalog = self.attribute_map()
        by_name = {d.name: d for d in self.dimensions}

        def _expand(expression: Expression, seen: frozenset[str]) -> Expression:
            def _replace(node: Expression) -> Expression | None:
                if (
                    isinstance(node, RefExpression)
                    and node.name != MAIN
                    and node.name not in catalog
                    and node.name in by_name
                    and node.name not in seen
                ):
                    return _expand(by_name[node.name].expression, seen | {node.name})
                return None

            return expression.substitute(_replace)

        return _expand(dimension.expression, frozenset({dimension.name}))

    def get_issues(self) -> list[str]:
        """
        Collect every advisory problem with this data source.

        Never raises. One issue at most per dimension/measure, dimensions first,
        then measures, each in declaration order.
        """
        catalog = self.attribute_map()
        issues: list[str] = []

        for dimension in self.dimensions:
            prefix = f"failed to validate dimension '{dimension.name}'"
            expression = self.expand_dimension_expression(dimension)
            if expression.contains_main():
                issues.append(f"{prefix}: dimension must not contain a ${MAIN} reference")
                continue
            try:
                resolve(expression, catalog)
            except ResolutionError as e:
                issues.append(f"{prefix}: {e}")

        for measure in self.measures:
            prefix = f"failed to validate measure '{measure.name}'"
            if not measure.expression.contains_main():
                issues.append(f"{prefix}: measure must contain a ${MAIN} reference")
                continue
            try:
                resolved = resolve(measure.expression, catalog)
            except ResolutionError as e:
                issues.append(f"{prefix}: {e}")
                continue
            if resolved.type not in (AttributeType.NUMBER, None):
                issues.append(f"{prefix}: measure must resolve to type NUMBER (is {resolved.type.value})")

        return issues

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def deduce_attributes(self) -> list[Attribute]:
        """Infer the attribute catalog implied by the configured expressions."""
        from datacube.core.deduction import deduce_attributes

        return deduce_attributes(self)

    def add_attributes(
        self,
        new_attributes: list[Attribute] | tuple[Attribute, ...],
        policy: "AggregatePolicy | None" = None,
        diagnostics: list[SynthesisSkipped] | None = None,
    ) -> "DataSource":
        """Merge a freshly introspected catalog; see ``datacube.core.reconciliation.add_attributes``."""
        from datacube.core.reconciliation import add_attributes

        return add_attributes(self, new_attributes, policy=policy, diagnostics=diagnostics)

    def change_attributes(self, attributes: list[Attribute] | tuple[Attribute, ...]) -> "DataSource":
        """Replace the attribute catalog as-is (no renaming, no synthesis)."""
        return replace(self, attributes=tuple(attributes))

    def change(self, **changes: Any) -> "DataSource":
        """
        Functional update of any field.

        Raises:
            TypeError: On an unknown field name
        """
        return replace(self, **changes)
