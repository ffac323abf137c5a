"""Line chart: a measure over a single time split."""

from datacube.core.data_source import DataSource
from datacube.core.splits import Colors, SplitCombine, Splits
from datacube.visualization.manifest import Adjustment, Manifest, Resolve, is_time_split


def handle_circumstance(
    data_source: DataSource, splits: Splits, colors: Colors | None, current: bool
) -> Resolve | None:
    if splits.length() == 1 and is_time_split(data_source, splits.first()):
        return Resolve.ready(8 if current else 7)

    time_dimension = data_source.get_time_dimension()
    if time_dimension is None:
        return None
    return Resolve.automatic(5, Adjustment(splits=Splits.of(SplitCombine.from_name(time_dimension.name))))


LINE_CHART_MANIFEST = Manifest("line-chart", "Line Chart", handle_circumstance, "multi")
