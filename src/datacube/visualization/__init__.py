"""Visualization manifests, their registry and the selector."""

from datacube.visualization.manifest import Adjustment, Manifest, Resolve, ResolveState
from datacube.visualization.registry import ManifestRegistry, default_manifest_registry
from datacube.visualization.selector import Selection, select_visualization

__all__ = [
    "Adjustment",
    "default_manifest_registry",
    "Manifest",
    "ManifestRegistry",
    "Resolve",
    "ResolveState",
    "select_visualization",
    "Selection",
]
