"""
Analytical state consumed by visualization manifests: splits and colors.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, ClassVar

from datacube.core.errors import ConfigError
from datacube.core.expression import Expression, RefExpression


@dataclass(frozen=True)
class SplitCombine:
    """A single grouping operation: split on ``expression``, optionally limited."""

    expression: Expression
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"expression": self.expression.to_dict()}
        if self.limit is not None:
            result["limit"] = self.limit
        return result

    @classmethod
    def from_config(cls, value: Any) -> "SplitCombine":
        """Accept a dimension name, an expression, or a ``{"expression": ..., "limit": ...}`` dict."""
        if isinstance(value, str):
            return cls(RefExpression(value))
        if isinstance(value, dict) and "expression" in value:
            return cls(Expression.from_config(value["expression"]), value.get("limit"))
        if isinstance(value, (dict, Expression)):
            return cls(Expression.from_config(value))
        raise ConfigError(f"can not interpret split {value!r}")

    @classmethod
    def from_name(cls, name: str) -> "SplitCombine":
        return cls(RefExpression(name))


@dataclass(frozen=True)
class Splits:
    """Ordered, immutable list of split combines."""

    combines: tuple[SplitCombine, ...] = ()

    EMPTY: ClassVar["Splits"]

    def __len__(self) -> int:
        return len(self.combines)

    def __iter__(self) -> Iterator[SplitCombine]:
        return iter(self.combines)

    def length(self) -> int:
        return len(self.combines)

    def first(self) -> SplitCombine | None:
        return self.combines[0] if self.combines else None

    def to_list(self) -> list[dict[str, Any]]:
        return [combine.to_dict() for combine in self.combines]

    @classmethod
    def from_config(cls, values: Any) -> "Splits":
        if values is None:
            return cls.EMPTY
        if isinstance(values, str):
            values = [name.strip() for name in values.split(",") if name.strip()]
        return cls(tuple(SplitCombine.from_config(value) for value in values))

    @classmethod
    def of(cls, *combines: SplitCombine) -> "Splits":
        return cls(tuple(combines))


Splits.EMPTY = Splits()


@dataclass(frozen=True)
class Colors:
    """Color assignment: which dimension drives the series colors, and for which values."""

    dimension: str
    values: tuple[Any, ...] = ()
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"dimension": self.dimension}
        if self.values:
            result["values"] = list(self.values)
        if self.limit is not None:
            result["limit"] = self.limit
        return result
