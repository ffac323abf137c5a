"""
Introspected-attribute merge.

Every refresh cycle delivers a fresh attribute catalog. ``add_attributes``
folds it into a DataSource:

1. apply ``attributeOverrides`` to matching introspected attributes
2. rename URL-unsafe attributes and rewrite every expression through the rename table
3. replace the catalog wholesale (existing dimensions/measures are never pruned)
4. find attributes not covered by any dimension/measure (structural equality)
5. synthesize dimensions/measures for them, as far as ``introspection`` allows
6. append the new entries after the existing ones, in catalog order

The function is pure: same inputs, same output, and re-running it on its own
output with the same catalog adds nothing.
"""

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from datacube.core.attribute import Attribute, AttributeSpecial, AttributeType
from datacube.core.dimension import Dimension, kind_for_type
from datacube.core.errors import ConfigError, SynthesisSkipped
from datacube.core.expression import Expression, main_aggregate, ref
from datacube.core.measure import Measure
from datacube.core.naming import disambiguate_name, is_url_safe, make_title, name_tokens, sanitize_name
from datacube.core.splits import SplitCombine, Splits

if TYPE_CHECKING:
    from datacube.core.data_source import DataSource

logger = structlog.get_logger(__name__)

AUTOFILL_DIMENSIONS = frozenset({"autofill-all", "autofill-dimensions-only"})
AUTOFILL_MEASURES = frozenset({"autofill-all", "autofill-measures-only"})

# Single-aggregate measure shapes that count as covering a numeric column
COVERING_AGGREGATES = ("sum", "min", "max", "average")

# Column types that synthesize a dimension when splittable
_DIMENSION_TYPES = frozenset(
    {AttributeType.STRING, AttributeType.SET_STRING, AttributeType.NUMBER, AttributeType.BOOLEAN}
)


@dataclass(frozen=True)
class AggregatePolicy:
    """
    How to aggregate unsplittable (pre-aggregated) numeric columns.

    A column whose name contains one of the tokens (split on ``_`` and camelCase,
    compared whole and case-insensitively) gets the matching aggregate; anything
    else gets ``default_aggregate``. ``max_name_suffix`` bounds the
    ``name_2 .. name_N`` disambiguation pass for colliding names.
    """

    token_aggregates: tuple[tuple[str, str], ...] = (("min", "min"), ("max", "max"))
    default_aggregate: str = "sum"
    max_name_suffix: int = 10

    def aggregate_for(self, column_name: str) -> str:
        tokens = name_tokens(column_name)
        for token, aggregate in self.token_aggregates:
            if token in tokens:
                return aggregate
        return self.default_aggregate

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AggregatePolicy":
        """
        Build the policy from the reconciliation config.

        Keys: ``default_aggregate``, ``min_token``, ``max_token``, ``max_name_suffix``.

        Raises:
            ConfigError: If an aggregate is not one of sum/min/max/average
        """
        default_aggregate = config.get("default_aggregate", "sum")
        if default_aggregate not in COVERING_AGGREGATES:
            raise ConfigError(
                f"default_aggregate must be one of {', '.join(COVERING_AGGREGATES)} (is {default_aggregate})"
            )
        token_aggregates = []
        for aggregate in ("min", "max"):
            token = config.get(f"{aggregate}_token", aggregate)
            if token:
                token_aggregates.append((str(token).lower(), aggregate))
        return cls(
            token_aggregates=tuple(token_aggregates),
            default_aggregate=default_aggregate,
            max_name_suffix=int(config.get("max_name_suffix", 10)),
        )


def covering_expressions(attribute: Attribute) -> list[Expression]:
    """
    Expression shapes that count as already covering ``attribute``.

    A direct reference always does. A ``unique`` column is also covered by a
    distinct count over ``$main``, and a numeric column by a single aggregate
    over ``$main``, which is what synthesis would produce for it.
    """
    expressions: list[Expression] = [ref(attribute.name)]
    if attribute.special is AttributeSpecial.UNIQUE:
        expressions.append(main_aggregate("countDistinct", attribute.name))
    if attribute.type is AttributeType.NUMBER:
        expressions.extend(main_aggregate(aggregate, attribute.name) for aggregate in COVERING_AGGREGATES)
    return expressions


def _plan(attribute: Attribute, policy: AggregatePolicy, has_time_dimension: bool) -> tuple[str, str] | None:
    """Decide what to synthesize: ("dimension", kind), ("measure", aggregate) or nothing."""
    if attribute.special is AttributeSpecial.HISTOGRAM:
        return None
    if attribute.special is AttributeSpecial.UNIQUE:
        return ("measure", "countDistinct")
    if attribute.unsplittable:
        if attribute.type is AttributeType.NUMBER:
            return ("measure", policy.aggregate_for(attribute.name))
        return None
    if attribute.type is AttributeType.TIME:
        return None if has_time_dimension else ("dimension", "time")
    if attribute.type in _DIMENSION_TYPES:
        return ("dimension", kind_for_type(attribute.type))
    return None


def _apply_overrides(data_source: "DataSource", attributes: list[Attribute]) -> list[Attribute]:
    overrides = {override.name: override for override in data_source.attribute_overrides}
    return [overrides.get(attribute.name, attribute) for attribute in attributes]


def _dedupe(data_source: "DataSource", attributes: list[Attribute]) -> list[Attribute]:
    seen: set[str] = set()
    unique: list[Attribute] = []
    for attribute in attributes:
        if attribute.name in seen:
            logger.warning("duplicate_attribute_ignored", data_source=data_source.name, attribute=attribute.name)
            continue
        seen.add(attribute.name)
        unique.append(attribute)
    return unique


def _skip(
    data_source: "DataSource",
    diagnostics: list[SynthesisSkipped] | None,
    attribute: str,
    kind: str,
    name: str,
    reason: str,
) -> None:
    record = SynthesisSkipped(data_source=data_source.name, attribute=attribute, kind=kind, name=name, reason=reason)
    logger.warning("synthesis_skipped", data_source=data_source.name, attribute=attribute, kind=kind, name=name)
    if diagnostics is not None:
        diagnostics.append(record)


def rename_unsafe_attributes(
    data_source: "DataSource",
    attributes: list[Attribute],
    policy: AggregatePolicy,
    diagnostics: list[SynthesisSkipped] | None = None,
) -> tuple[list[Attribute], dict[str, str]]:
    """
    Give every URL-unsafe attribute a sanitized, catalog-unique name.

    Suffixes are handed out in order of the original names, so the same set
    of columns always gets the same renames whatever order the feed lists them in.

    Returns:
        (renamed catalog in input order, rename table old -> new)
    """
    taken = {attribute.name for attribute in attributes if is_url_safe(attribute.name)}
    renames: dict[str, str] = {}
    unsafe = sorted({attribute.name for attribute in attributes if not is_url_safe(attribute.name)})
    for name in unsafe:
        safe_name = disambiguate_name(sanitize_name(name), taken, policy.max_name_suffix)
        if safe_name is None:
            _skip(data_source, diagnostics, name, "attribute", sanitize_name(name), "rename collides")
            continue
        taken.add(safe_name)
        renames[name] = safe_name

    renamed: list[Attribute] = []
    for attribute in attributes:
        if is_url_safe(attribute.name):
            renamed.append(attribute)
        elif attribute.name in renames:
            renamed.append(attribute.with_name(renames[attribute.name]))
    return renamed, renames


def add_attributes(
    data_source: "DataSource",
    new_attributes: list[Attribute] | tuple[Attribute, ...],
    policy: AggregatePolicy | None = None,
    diagnostics: list[SynthesisSkipped] | None = None,
) -> "DataSource":
    """
    Merge a freshly introspected attribute catalog into a data source.

    Args:
        data_source: Current published data source (not modified)
        new_attributes: Introspected catalog for this refresh cycle
        policy: Aggregate/disambiguation policy (defaults to AggregatePolicy())
        diagnostics: Optional list that receives a SynthesisSkipped record per skipped synthesis

    Returns:
        New DataSource with the replaced catalog and any synthesized dimensions/measures
    """
    policy = policy or AggregatePolicy()

    attributes = _dedupe(data_source, _apply_overrides(data_source, list(new_attributes)))
    attributes, renames = rename_unsafe_attributes(data_source, attributes, policy, diagnostics)

    dimensions = [d.with_expression(d.expression.rename_references(renames)) for d in data_source.dimensions]
    measures = [m.with_expression(m.expression.rename_references(renames)) for m in data_source.measures]

    covered = {d.expression.to_canonical() for d in dimensions} | {m.expression.to_canonical() for m in measures}
    taken_names = {d.name for d in dimensions} | {m.name for m in measures}
    has_time_dimension = any(d.is_time for d in dimensions)

    time_attribute = renames.get(data_source.time_attribute, data_source.time_attribute)

    autofill_dimensions = data_source.introspection in AUTOFILL_DIMENSIONS
    autofill_measures = data_source.introspection in AUTOFILL_MEASURES

    added_dimensions: list[str] = []
    added_measures: list[str] = []

    for attribute in attributes:
        if any(expression.to_canonical() in covered for expression in covering_expressions(attribute)):
            continue

        plan = _plan(attribute, policy, has_time_dimension)
        if plan is None:
            continue
        kind, detail = plan
        if kind == "dimension" and not autofill_dimensions:
            continue
        if kind == "measure" and not autofill_measures:
            continue

        name = disambiguate_name(attribute.name, taken_names, policy.max_name_suffix)
        if name is None:
            _skip(data_source, diagnostics, attribute.name, kind, attribute.name, "name collides")
            continue

        if kind == "dimension":
            dimension = Dimension(name=name, title=make_title(name), kind=detail, expression=ref(attribute.name))
            dimensions.append(dimension)
            covered.add(dimension.expression.to_canonical())
            added_dimensions.append(name)
            if dimension.is_time:
                has_time_dimension = True
                time_attribute = time_attribute or attribute.name
        else:
            measure = Measure.from_attribute(attribute, aggregate=detail, name=name)
            measures.append(measure)
            covered.add(measure.expression.to_canonical())
            added_measures.append(name)
        taken_names.add(name)

    measure_names = [m.name for m in measures]
    default_sort_measure = renames.get(data_source.default_sort_measure, data_source.default_sort_measure)
    if default_sort_measure not in measure_names:
        default_sort_measure = measure_names[0] if measure_names else None

    default_splits = Splits(
        tuple(
            SplitCombine(combine.expression.rename_references(renames), combine.limit)
            for combine in data_source.default_splits
        )
    )

    if renames or added_dimensions or added_measures:
        logger.info(
            "attributes_merged",
            data_source=data_source.name,
            attributes=len(attributes),
            renamed=sorted(renames.values()),
            added_dimensions=added_dimensions,
            added_measures=added_measures,
        )

    return dataclasses.replace(
        data_source,
        attributes=tuple(attributes),
        dimensions=tuple(dimensions),
        measures=tuple(measures),
        time_attribute=time_attribute,
        default_sort_measure=default_sort_measure,
        default_splits=default_splits,
        default_filter=data_source.default_filter.rename_references(renames),
        subset_filter=data_source.subset_filter.rename_references(renames) if data_source.subset_filter else None,
    )
