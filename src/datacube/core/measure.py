"""Measure: a named aggregate over the ``$main`` dataset."""

from dataclasses import dataclass
from typing import Any

from datacube.core.attribute import Attribute, AttributeSpecial
from datacube.core.errors import ConfigError
from datacube.core.expression import Expression, main_aggregate
from datacube.core.naming import assert_url_safe, make_title, sanitize_name

DEFAULT_FORMAT = "0,0.0 a"


@dataclass(frozen=True)
class Measure:
    """
    An aggregate field.

    Attributes:
        name: URL safe identifier (shared namespace with dimensions)
        title: Display title
        expression: Aggregate expression; must reference ``$main``
        format: Number format string for display
    """

    name: str
    title: str
    expression: Expression
    format: str = DEFAULT_FORMAT

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "expression": self.expression.to_dict(),
        }
        if self.format != DEFAULT_FORMAT:
            result["format"] = self.format
        return result

    def with_expression(self, expression: Expression) -> "Measure":
        return Measure(self.name, self.title, expression, self.format)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Measure":
        """
        Build a measure from config.

        Missing ``expression`` means ``$main.sum($<name>)``.

        Raises:
            NamingError: If the name is not URL safe
            ConfigError: On malformed expression
        """
        if not isinstance(data, dict):
            raise ConfigError(f"measure must be a dict, got {data!r}")
        name = data.get("name", "")
        assert_url_safe(name, "measure")

        raw_expression = data.get("expression")
        expression = (
            Expression.from_config(raw_expression) if raw_expression is not None else main_aggregate("sum", name)
        )
        return cls(
            name=name,
            title=data.get("title") or make_title(name),
            expression=expression,
            format=data.get("format") or DEFAULT_FORMAT,
        )

    @classmethod
    def from_attribute(cls, attribute: Attribute, aggregate: str = "sum", name: str | None = None) -> "Measure":
        """Synthesize the default measure for an introspected attribute."""
        if attribute.special is AttributeSpecial.UNIQUE:
            aggregate = "countDistinct"
        name = name or sanitize_name(attribute.name)
        return cls(name=name, title=make_title(name), expression=main_aggregate(aggregate, attribute.name))
