"""
DataSource Registry - published data source versions and their refresh cycle.

Readers call ``get`` and always see a fully built, immutable DataSource. Writers
go through ``publish``, ``compare_and_swap`` or ``refresh``; refreshes of one
name are serialized by a per-name lock while different names refresh in
parallel (``refresh_all``).
"""

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import polars as pl
import structlog

from datacube.core.attribute import Attribute
from datacube.core.config_loader import load_data_sources_file
from datacube.core.data_source import DataSource
from datacube.core.errors import ConfigError, DatacubeError, SynthesisSkipped, ValidationError
from datacube.core.introspection import introspect_frame
from datacube.core.legacy_migration import DEFAULT_INTROSPECTION
from datacube.core.reconciliation import AggregatePolicy

logger = structlog.get_logger(__name__)

Introspector = Callable[[DataSource], Iterable[Attribute]]


@dataclass(frozen=True)
class PublishedDataSource:
    """A data source together with its monotonically increasing version."""

    version: int
    data_source: DataSource


@dataclass(frozen=True)
class LoadError:
    """A data source config that failed to build."""

    name: str
    error: str


class DataSourceRegistry:
    """
    Registry of published DataSources keyed by name.

    Args:
        policy: Aggregate policy used by refresh merges
        default_introspection: Introspection strategy for configs that set none
        clusters: Known cluster names (None disables the cluster check)

    Attributes:
        load_errors: Configs that failed to build on load
        diagnostics: Entries skipped by the latest merge, per data source name
    """

    def __init__(
        self,
        policy: AggregatePolicy | None = None,
        default_introspection: str = DEFAULT_INTROSPECTION,
        clusters: Iterable[str] | None = None,
    ):
        self.policy = policy or AggregatePolicy()
        self.default_introspection = default_introspection
        self.clusters = set(clusters) if clusters is not None else None
        self.load_errors: list[LoadError] = []
        self.diagnostics: dict[str, tuple[SynthesisSkipped, ...]] = {}
        self._published: dict[str, PublishedDataSource] = {}
        self._frames: dict[str, pl.DataFrame] = {}
        self._lock = threading.Lock()
        self._name_locks: dict[str, threading.Lock] = {}

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "DataSourceRegistry":
        """Build a registry from a loaded reconciliation config dict."""
        return cls(
            policy=AggregatePolicy.from_config(config),
            default_introspection=config.get("default_introspection", DEFAULT_INTROSPECTION),
        )

    def _name_lock(self, name: str) -> threading.Lock:
        with self._lock:
            lock = self._name_locks.get(name)
            if lock is None:
                lock = self._name_locks[name] = threading.Lock()
            return lock

    # =========================================================================
    # Read side
    # =========================================================================

    def get(self, name: str) -> DataSource | None:
        published = self._published.get(name)
        return published.data_source if published else None

    def get_version(self, name: str) -> int | None:
        published = self._published.get(name)
        return published.version if published else None

    def get_published(self, name: str) -> PublishedDataSource | None:
        return self._published.get(name)

    def list_data_sources(self) -> list[str]:
        """
        Get published data source names.

        Returns:
            Names in publication order
        """
        return list(self._published.keys())

    def get_data_source_info(self, name: str) -> dict[str, Any]:
        """
        Get a summary of a published data source.

        Args:
            name: Data source name

        Returns:
            Dictionary with version, counts, issues and the serialized config

        Raises:
            KeyError: If nothing is published under ``name``
        """
        published = self._published.get(name)
        if published is None:
            available = ", ".join(self._published.keys())
            raise KeyError(f"Data source '{name}' not found in registry. Available data sources: {available}")
        data_source = published.data_source
        return {
            "name": name,
            "version": published.version,
            "title": data_source.title,
            "introspection": data_source.introspection,
            "attribute_count": len(data_source.attributes),
            "dimension_count": len(data_source.dimensions),
            "measure_count": len(data_source.measures),
            "issues": data_source.get_issues(),
            "config": data_source.to_dict(),
        }

    # =========================================================================
    # Write side
    # =========================================================================

    def publish(self, data_source: DataSource) -> int:
        """
        Publish a data source, replacing any previous version.

        Returns:
            The new version number
        """
        with self._lock:
            current = self._published.get(data_source.name)
            version = current.version + 1 if current else 1
            self._published[data_source.name] = PublishedDataSource(version, data_source)
        logger.info("data_source_published", data_source=data_source.name, version=version)
        return version

    def compare_and_swap(self, name: str, expected_version: int | None, data_source: DataSource) -> bool:
        """
        Publish only if the current version is still ``expected_version``.

        ``expected_version=None`` means "nothing published yet".

        Returns:
            True when the swap happened
        """
        if data_source.name != name:
            raise ValueError(f"data source '{data_source.name}' can not be published as '{name}'")
        with self._lock:
            current = self._published.get(name)
            current_version = current.version if current else None
            if current_version != expected_version:
                logger.info(
                    "data_source_swap_rejected",
                    data_source=name,
                    expected_version=expected_version,
                    current_version=current_version,
                )
                return False
            version = (current_version or 0) + 1
            self._published[name] = PublishedDataSource(version, data_source)
        logger.info("data_source_published", data_source=name, version=version)
        return True

    def remove(self, name: str) -> bool:
        with self._lock:
            self._frames.pop(name, None)
            self.diagnostics.pop(name, None)
            return self._published.pop(name, None) is not None

    def reset(self) -> None:
        """Reset registry (mainly for testing)."""
        with self._lock:
            self._published = {}
            self._frames = {}
            self._name_locks = {}
            self.load_errors = []
            self.diagnostics = {}

    # =========================================================================
    # Refresh cycle
    # =========================================================================

    def refresh(self, name: str, introspector: Introspector) -> PublishedDataSource | None:
        """
        Run one refresh cycle for a data source.

        Reads the published version, asks ``introspector`` for the current
        attribute catalog, merges it and publishes the result. One writer per
        name at a time; sources with ``introspection: none`` are left alone.

        Args:
            name: Data source name
            introspector: Callable returning the attribute catalog for a DataSource

        Returns:
            The published version after the cycle (None if ``name`` is unknown)
        """
        with self._name_lock(name):
            published = self.get_published(name)
            if published is None:
                logger.warning("refresh_unknown_data_source", data_source=name)
                return None

            data_source = published.data_source
            if data_source.introspection == "none":
                logger.debug("refresh_skipped", data_source=name, introspection="none")
                return published

            attributes = list(introspector(data_source))
            diagnostics: list[SynthesisSkipped] = []
            merged = data_source.add_attributes(attributes, policy=self.policy, diagnostics=diagnostics)
            with self._lock:
                self.diagnostics[name] = tuple(diagnostics)

            if merged == data_source:
                logger.debug("refresh_unchanged", data_source=name, version=published.version)
                return published

            if not self.compare_and_swap(name, published.version, merged):
                # Someone published outside the refresh path; keep theirs
                return self._published.get(name)
            return self._published[name]

    def refresh_all(self, introspector: Introspector, max_workers: int = 4) -> dict[str, int | None]:
        """
        Refresh every published data source in parallel.

        A failing refresh is logged and leaves the previous version published.

        Args:
            introspector: Callable returning the attribute catalog for a DataSource
            max_workers: Thread pool size

        Returns:
            Mapping of name to published version after the cycle (None for failures)
        """
        names = self.list_data_sources()
        results: dict[str, int | None] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.refresh, name, introspector): name for name in names}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    published = future.result()
                    results[name] = published.version if published else None
                except Exception as e:
                    logger.error("refresh_failed", data_source=name, error=str(e), exc_info=True)
                    results[name] = None
        logger.info("refresh_cycle_completed", data_sources=len(names), failed=sum(v is None for v in results.values()))
        return results

    # =========================================================================
    # Loading
    # =========================================================================

    def load_data_sources(self, raws: Iterable[dict[str, Any]]) -> list[str]:
        """
        Build and publish data sources from config dicts.

        A config that fails validation is logged and recorded in ``load_errors``;
        the others still load.

        Returns:
            Names that were published
        """
        context = {"default_introspection": self.default_introspection, "clusters": self.clusters}
        loaded: list[str] = []
        for raw in raws:
            name = raw.get("name", "<unnamed>") if isinstance(raw, dict) else "<invalid>"
            try:
                data_source = DataSource.from_config(raw, context)
            except (ValidationError, ConfigError) as e:
                logger.error("data_source_load_failed", data_source=name, error=str(e))
                self.load_errors.append(LoadError(name=name, error=str(e)))
                continue
            for issue in data_source.get_issues():
                logger.warning("data_source_issue", data_source=data_source.name, issue=issue)
            self.publish(data_source)
            loaded.append(data_source.name)
        return loaded

    def load_config(self, config_path: Path) -> list[str]:
        """
        Load a data sources YAML file (``dataSources`` and optional ``clusters``).

        Raises:
            ConfigError: If the file itself can not be read
        """
        config = load_data_sources_file(config_path)
        if config["clusters"]:
            self.clusters = {cluster["name"] if isinstance(cluster, dict) else cluster for cluster in config["clusters"]}
        return self.load_data_sources(config["dataSources"])

    def register_from_dataframe(
        self,
        name: str,
        df: pl.DataFrame,
        title: str | None = None,
        unsplittable: Iterable[str] = (),
        special: dict[str, str] | None = None,
    ) -> DataSource:
        """
        Register a data source backed by an in-memory polars DataFrame.

        The frame's schema is introspected immediately, so the published source
        already carries synthesized dimensions and measures. Later refreshes
        can use ``frame_introspector``.

        Example:
            >>> registry = DataSourceRegistry()
            >>> df = pl.DataFrame({"channel": ["en", "de"], "count": [3, 5]})
            >>> ds = registry.register_from_dataframe("wiki", df, unsplittable=["count"])
            >>> [m.name for m in ds.measures]
            ['count']
        """
        if self.get(name) is not None:
            raise DatacubeError(f"data source '{name}' is already registered")
        data_source = DataSource.from_config(
            {"name": name, "title": title, "source": name, "introspection": self.default_introspection}
        )
        attributes = introspect_frame(df, unsplittable=unsplittable, special=special)
        diagnostics: list[SynthesisSkipped] = []
        data_source = data_source.add_attributes(attributes, policy=self.policy, diagnostics=diagnostics)
        if not self.compare_and_swap(name, None, data_source):
            raise DatacubeError(f"data source '{name}' is already registered")
        with self._lock:
            self._frames[name] = df
            self.diagnostics[name] = tuple(diagnostics)
        return data_source

    def get_dataframe(self, name: str) -> pl.DataFrame | None:
        """Retrieve the DataFrame behind a data source registered from a frame."""
        return self._frames.get(name)

    def frame_introspector(self, unsplittable: Iterable[str] = ()) -> Introspector:
        """Introspector that reads the schema of the frame registered for each source."""
        unsplittable = tuple(unsplittable)

        def _introspect(data_source: DataSource) -> list[Attribute]:
            df = self._frames.get(data_source.name)
            if df is None:
                raise DatacubeError(f"no DataFrame registered for data source '{data_source.name}'")
            return introspect_frame(df, unsplittable=unsplittable)

        return _introspect
