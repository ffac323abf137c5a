"""Bar chart: one or two categorical splits."""

from datacube.core.data_source import DataSource
from datacube.core.splits import Colors, Splits
from datacube.visualization.manifest import Adjustment, Manifest, Resolve, is_time_split


def handle_circumstance(
    data_source: DataSource, splits: Splits, colors: Colors | None, current: bool
) -> Resolve | None:
    if not splits.length():
        return None
    if any(is_time_split(data_source, combine) for combine in splits):
        return None
    if splits.length() <= 2:
        return Resolve.ready(6)
    return Resolve.automatic(3, Adjustment(splits=Splits.of(splits.first())))


BAR_CHART_MANIFEST = Manifest("bar-chart", "Bar Chart", handle_circumstance, "multi")
