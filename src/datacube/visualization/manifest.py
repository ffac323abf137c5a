"""
Visualization manifests and their resolution outcomes.

A manifest declares whether its visualization can render an analytical state
(splits + colors) for a data source. The answer is a Resolve:

- READY(score): renders the state as-is
- AUTOMATIC(score, adjustment): renders it once ``adjustment`` is applied
- None: no claim

Scores are clamped to 0..10; the selector prefers higher scores.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from datacube.core.data_source import DataSource
from datacube.core.dimension import Dimension
from datacube.core.expression import RefExpression
from datacube.core.splits import Colors, SplitCombine, Splits

MIN_SCORE = 0
MAX_SCORE = 10


class ResolveState(Enum):
    READY = "ready"
    AUTOMATIC = "automatic"


@dataclass(frozen=True)
class Adjustment:
    """
    Partial analytical state proposed by an AUTOMATIC resolve.

    Fields left as None keep the current value.
    """

    splits: Splits | None = None
    colors: Colors | None = None

    def apply(self, splits: Splits, colors: Colors | None) -> tuple[Splits, Colors | None]:
        """
        Apply the adjustment to a state.

        Colors keyed on a dimension that is no longer split are dropped.
        """
        new_splits = self.splits if self.splits is not None else splits
        new_colors = self.colors if self.colors is not None else colors
        if new_colors is not None:
            split_names = {c.expression.name for c in new_splits if isinstance(c.expression, RefExpression)}
            if new_colors.dimension not in split_names:
                new_colors = None
        return new_splits, new_colors

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.splits is not None:
            result["splits"] = self.splits.to_list()
        if self.colors is not None:
            result["colors"] = self.colors.to_dict()
        return result


def _clamp(score: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, score))


@dataclass(frozen=True)
class Resolve:
    """Outcome of a manifest evaluation. Build with ``ready`` or ``automatic``."""

    state: ResolveState
    score: float
    adjustment: Adjustment | None = None

    @classmethod
    def ready(cls, score: float) -> "Resolve":
        return cls(ResolveState.READY, _clamp(score))

    @classmethod
    def automatic(cls, score: float, adjustment: Adjustment | dict[str, Any]) -> "Resolve":
        """
        Claim the state once ``adjustment`` is applied.

        Args:
            score: Preference score (clamped to 0..10)
            adjustment: Adjustment, or a dict with ``splits`` and/or ``colors``
        """
        if isinstance(adjustment, dict):
            adjustment = Adjustment(splits=adjustment.get("splits"), colors=adjustment.get("colors"))
        if adjustment.splits is None and adjustment.colors is None:
            raise ValueError("automatic resolve needs an adjustment that changes splits or colors")
        return cls(ResolveState.AUTOMATIC, _clamp(score), adjustment)

    @property
    def is_ready(self) -> bool:
        return self.state is ResolveState.READY

    @property
    def is_automatic(self) -> bool:
        return self.state is ResolveState.AUTOMATIC

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"state": self.state.value, "score": self.score}
        if self.adjustment is not None:
            result["adjustment"] = self.adjustment.to_dict()
        return result


CircumstanceHandler = Callable[[DataSource, Splits, Colors | None, bool], Resolve | None]


@dataclass(frozen=True)
class Manifest:
    """
    A visualization and the pure function deciding what it can render.

    Attributes:
        id: Unique identifier (registry key)
        title: Display title
        handle_circumstance: ``(data_source, splits, colors, current) -> Resolve | None``
        visualization_class: Grouping hint for the UI
    """

    id: str
    title: str
    handle_circumstance: CircumstanceHandler
    visualization_class: str = "multi"

    def evaluate(
        self,
        data_source: DataSource,
        splits: Splits,
        colors: Colors | None = None,
        current: bool = False,
    ) -> Resolve | None:
        """Evaluate this manifest; ``current`` is True when it is the visualization on screen."""
        return self.handle_circumstance(data_source, splits, colors, current)


def split_dimension(data_source: DataSource, combine: SplitCombine) -> Dimension | None:
    """Find the dimension a split groups on, by name first, then by expression."""
    if isinstance(combine.expression, RefExpression):
        dimension = data_source.get_dimension(combine.expression.name)
        if dimension is not None:
            return dimension
    return data_source.get_dimension_by_expression(combine.expression)


def is_time_split(data_source: DataSource, combine: SplitCombine) -> bool:
    dimension = split_dimension(data_source, combine)
    if dimension is not None:
        return dimension.is_time
    return data_source.is_time_attribute(combine.expression)
