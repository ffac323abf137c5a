"""
Visualization selection.

Evaluates every registered manifest against the current state and picks the
best claim. An AUTOMATIC winner has its adjustment applied here, and only here;
the returned Selection carries the state that should actually be rendered.
"""

from dataclasses import dataclass

import structlog

from datacube.core.data_source import DataSource
from datacube.core.splits import Colors, Splits
from datacube.visualization.manifest import Manifest, Resolve
from datacube.visualization.registry import ManifestRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Selection:
    """The chosen manifest, its resolve, and the (possibly adjusted) state to render."""

    manifest: Manifest
    resolve: Resolve
    splits: Splits
    colors: Colors | None

    @property
    def adjusted(self) -> bool:
        return self.resolve.is_automatic


def _evaluate(
    manifest: Manifest,
    data_source: DataSource,
    splits: Splits,
    colors: Colors | None,
    current_id: str | None,
) -> Resolve | None:
    try:
        return manifest.evaluate(data_source, splits, colors, manifest.id == current_id)
    except Exception as e:
        logger.error("manifest_evaluation_failed", manifest=manifest.id, error=str(e), exc_info=True)
        return None


def rank_manifests(
    registry: ManifestRegistry,
    data_source: DataSource,
    splits: Splits,
    colors: Colors | None = None,
    current_id: str | None = None,
) -> list[tuple[Manifest, Resolve]]:
    """
    Evaluate all manifests and order the claims.

    Returns:
        (manifest, resolve) pairs, best score first; ties keep registration order
    """
    claims = []
    for manifest in registry.all():
        resolve = _evaluate(manifest, data_source, splits, colors, current_id)
        if resolve is not None:
            claims.append((manifest, resolve))
    return sorted(claims, key=lambda claim: -claim[1].score)


def select_visualization(
    registry: ManifestRegistry,
    data_source: DataSource,
    splits: Splits,
    colors: Colors | None = None,
    current_id: str | None = None,
) -> Selection | None:
    """
    Pick the visualization for a state.

    Args:
        registry: Manifests to consider
        data_source: Data source being explored
        splits: Current splits
        colors: Current colors (may be None)
        current_id: Id of the visualization currently on screen

    Returns:
        Selection, or None when no manifest claims the state
    """
    ranked = rank_manifests(registry, data_source, splits, colors, current_id)
    if not ranked:
        logger.info("no_visualization_claims", data_source=data_source.name, splits=len(splits))
        return None

    manifest, resolve = ranked[0]
    if resolve.is_ready:
        return Selection(manifest, resolve, splits, colors)

    adjusted_splits, adjusted_colors = resolve.adjustment.apply(splits, colors)
    logger.info(
        "visualization_adjusted",
        manifest=manifest.id,
        score=resolve.score,
        adjustment=resolve.adjustment.to_dict(),
    )

    settled = _evaluate(manifest, data_source, adjusted_splits, adjusted_colors, current_id)
    if settled is None or not settled.is_ready:
        logger.warning(
            "adjusted_state_not_ready",
            manifest=manifest.id,
            state=settled.state.value if settled else None,
        )
    return Selection(manifest, resolve, adjusted_splits, adjusted_colors)
