"""
Attribute deduction - infer the catalog implied by configured expressions.

Used when no live introspection is available (e.g. ``introspection: none``):
every column reference in the dimensions and measures becomes an attribute,
typed by how the expression uses it.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from datacube.core.attribute import Attribute, AttributeSpecial, AttributeType
from datacube.core.expression import MAIN, ChainExpression, Expression, RefExpression

if TYPE_CHECKING:
    from datacube.core.data_source import DataSource

_KIND_TYPES = {
    "time": AttributeType.TIME,
    "number": AttributeType.NUMBER,
    "boolean": AttributeType.BOOLEAN,
    "string": AttributeType.STRING,
}


@dataclass
class _Observation:
    type: AttributeType
    special: AttributeSpecial | None
    constrained: bool


Observer = Callable[[str, AttributeType, AttributeSpecial | None, bool], None]


def _walk(
    expression: Expression,
    expected: AttributeType,
    constrained: bool,
    observe: Observer,
    special: AttributeSpecial | None = None,
) -> None:
    """
    Visit column references left to right.

    ``expected`` is the type the surrounding context requires of this node;
    ``constrained`` is False when that type is only a default (e.g. the kind
    of a plain string dimension).
    """
    if isinstance(expression, RefExpression):
        observe(expression.name, expected, special, constrained)
        return

    if not isinstance(expression, ChainExpression):
        return

    head_signature = expression.actions[0].signature
    if head_signature.input_types is not None:
        _walk(expression.expression, head_signature.input_types[0], True, observe)
    else:
        _walk(expression.expression, expected, constrained, observe)

    for action in expression.actions:
        if action.expression is None:
            continue
        signature = action.signature
        if action.action == "countDistinct":
            _walk(action.expression, AttributeType.STRING, True, observe, AttributeSpecial.UNIQUE)
        elif signature.expression_types is not None:
            _walk(action.expression, signature.expression_types[0], True, observe)
        else:
            _walk(action.expression, AttributeType.STRING, False, observe)


def deduce_attributes(data_source: "DataSource") -> list[Attribute]:
    """
    Deduce attributes from a data source's dimensions and measures.

    Walks dimensions then measures in declaration order. Each column appears
    once, at its first encounter. A type required by an operation replaces a
    type that was only implied by a dimension's kind; a ``unique`` tag, once
    seen, is kept. References to other dimensions are followed to the
    physical columns underneath.

    Returns:
        Deduced attributes in first-encounter order
    """
    observed: dict[str, _Observation] = {}

    def observe(
        name: str, attribute_type: AttributeType, special: AttributeSpecial | None, constrained: bool
    ) -> None:
        if attribute_type is AttributeType.DATASET or name == MAIN:
            return
        current = observed.get(name)
        if current is None:
            observed[name] = _Observation(attribute_type, special, constrained)
            return
        if constrained and not current.constrained:
            current.type = attribute_type
            current.constrained = True
        if special is not None and current.special is None:
            current.special = special

    for dimension in data_source.dimensions:
        _walk(
            data_source.expand_dimension_expression(dimension),
            _KIND_TYPES[dimension.kind],
            dimension.kind != "string",
            observe,
        )

    for measure in data_source.measures:
        _walk(measure.expression, AttributeType.NUMBER, False, observe)

    return [Attribute(name=name, type=obs.type, special=obs.special) for name, obs in observed.items()]
