"""
Built-in visualization manifests.

MANIFESTS is the closed list registered by ``default_manifest_registry``; its
order is the tie-break order.
"""

from datacube.visualization.manifests.bar_chart import BAR_CHART_MANIFEST
from datacube.visualization.manifests.line_chart import LINE_CHART_MANIFEST
from datacube.visualization.manifests.table import TABLE_MANIFEST
from datacube.visualization.manifests.totals import TOTALS_MANIFEST

MANIFESTS = (TOTALS_MANIFEST, TABLE_MANIFEST, LINE_CHART_MANIFEST, BAR_CHART_MANIFEST)

__all__ = [
    "BAR_CHART_MANIFEST",
    "LINE_CHART_MANIFEST",
    "MANIFESTS",
    "TABLE_MANIFEST",
    "TOTALS_MANIFEST",
]
