"""Manifest registry: the closed, ordered list of known visualizations."""

import structlog

from datacube.visualization.manifest import Manifest

logger = structlog.get_logger(__name__)


class ManifestRegistry:
    """Registration order is the selector's tie-break order."""

    def __init__(self) -> None:
        self._manifests: dict[str, Manifest] = {}

    def register(self, manifest: Manifest) -> Manifest:
        """
        Register a manifest.

        Raises:
            ValueError: If a manifest with the same id is already registered
        """
        if manifest.id in self._manifests:
            raise ValueError(f"manifest '{manifest.id}' is already registered")
        self._manifests[manifest.id] = manifest
        logger.debug("manifest_registered", manifest=manifest.id)
        return manifest

    def get(self, manifest_id: str) -> Manifest | None:
        return self._manifests.get(manifest_id)

    def all(self) -> list[Manifest]:
        return list(self._manifests.values())

    def __len__(self) -> int:
        return len(self._manifests)

    def __contains__(self, manifest_id: object) -> bool:
        return manifest_id in self._manifests


def default_manifest_registry() -> ManifestRegistry:
    """Registry with the built-in manifests, in preference order."""
    from datacube.visualization.manifests import MANIFESTS

    registry = ManifestRegistry()
    for manifest in MANIFESTS:
        registry.register(manifest)
    return registry
