"""Table: nested rows for any number of splits."""

from datacube.core.data_source import DataSource
from datacube.core.splits import Colors, SplitCombine, Splits
from datacube.visualization.manifest import Adjustment, Manifest, Resolve


def handle_circumstance(
    data_source: DataSource, splits: Splits, colors: Colors | None, current: bool
) -> Resolve | None:
    if splits.length():
        return Resolve.ready(10 if current else 9)

    dimension = next((d for d in data_source.dimensions if d.kind == "string"), None)
    if dimension is None:
        return None
    return Resolve.automatic(4, Adjustment(splits=Splits.of(SplitCombine.from_name(dimension.name))))


TABLE_MANIFEST = Manifest("table", "Table", handle_circumstance, "multi")
