"""Dimension: a named, groupable expression over attributes."""

from dataclasses import dataclass
from typing import Any, Literal

from datacube.core.attribute import AttributeType
from datacube.core.errors import ConfigError
from datacube.core.expression import Expression, RefExpression
from datacube.core.naming import assert_url_safe, make_title

DimensionKind = Literal["string", "time", "number", "boolean"]

DIMENSION_KINDS: tuple[str, ...] = ("string", "time", "number", "boolean")


def kind_for_type(attribute_type: AttributeType | None) -> DimensionKind:
    """Map a resolved type to the dimension kind the UI renders it as."""
    if attribute_type in (AttributeType.TIME, AttributeType.TIME_RANGE):
        return "time"
    if attribute_type in (AttributeType.NUMBER, AttributeType.NUMBER_RANGE):
        return "number"
    if attribute_type is AttributeType.BOOLEAN:
        return "boolean"
    return "string"


@dataclass(frozen=True)
class Dimension:
    """
    A groupable field.

    Attributes:
        name: URL safe identifier (shared namespace with measures)
        title: Display title
        kind: How the UI treats values (string/time/number/boolean)
        expression: Expression over the attribute catalog
        url: Optional link template (``%s`` is replaced by the value)
    """

    name: str
    title: str
    kind: DimensionKind
    expression: Expression
    url: str | None = None

    @property
    def is_time(self) -> bool:
        return self.kind == "time"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "kind": self.kind,
            "expression": self.expression.to_dict(),
        }
        if self.url:
            result["url"] = self.url
        return result

    def with_expression(self, expression: Expression) -> "Dimension":
        return Dimension(self.name, self.title, self.kind, expression, self.url)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Dimension":
        """
        Build a dimension from config.

        Missing ``expression`` means ``$<name>``, missing ``title`` is generated
        from the name, missing ``kind`` means "string".

        Raises:
            NamingError: If the name is not URL safe
            ConfigError: On unknown kind or malformed expression
        """
        if not isinstance(data, dict):
            raise ConfigError(f"dimension must be a dict, got {data!r}")
        name = data.get("name", "")
        assert_url_safe(name, "dimension")

        kind = data.get("kind") or "string"
        if kind not in DIMENSION_KINDS:
            raise ConfigError(f"unknown kind '{kind}' for dimension '{name}'")

        raw_expression = data.get("expression")
        expression = Expression.from_config(raw_expression) if raw_expression is not None else RefExpression(name)

        return cls(
            name=name,
            title=data.get("title") or make_title(name),
            kind=kind,
            expression=expression,
            url=data.get("url"),
        )
