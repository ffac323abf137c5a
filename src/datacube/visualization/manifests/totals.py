"""Totals: one big number per measure, no grouping."""

from datacube.core.data_source import DataSource
from datacube.core.splits import Colors, Splits
from datacube.visualization.manifest import Adjustment, Manifest, Resolve


def handle_circumstance(data_source: DataSource, splits: Splits, colors: Colors | None, current: bool) -> Resolve:
    if not splits.length():
        return Resolve.ready(10)
    return Resolve.automatic(3, Adjustment(splits=Splits.EMPTY))


TOTALS_MANIFEST = Manifest("totals", "Totals", handle_circumstance, "multi")
