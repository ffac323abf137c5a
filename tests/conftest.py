"""
Pytest configuration and fixtures for datacube tests.
"""

import sys
from pathlib import Path

import polars as pl
import pytest
import yaml

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from datacube.core.attribute import Attribute, AttributeSpecial, AttributeType  # noqa: E402
from datacube.core.data_source import DataSource  # noqa: E402


@pytest.fixture(scope="session")
def project_root():
    """Return project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def wiki_config() -> dict:
    """Canonical wiki data source config with a small catalog."""
    return {
        "name": "wiki",
        "title": "Wiki",
        "clusterName": "druid",
        "source": "wiki",
        "introspection": "autofill-all",
        "attributes": [
            {"name": "__time", "type": "TIME"},
            {"name": "page", "type": "STRING"},
            {"name": "added", "type": "NUMBER"},
            {"name": "deleted", "type": "NUMBER"},
        ],
        "dimensions": [
            {"name": "time", "kind": "time", "expression": "$__time"},
            {"name": "page"},
        ],
        "measures": [
            {"name": "added", "expression": "$main.sum($added)"},
            {"name": "deleted", "expression": "$main.sum($deleted)"},
        ],
    }


@pytest.fixture
def wiki_data_source(wiki_config) -> DataSource:
    return DataSource.from_config(wiki_config)


@pytest.fixture
def empty_data_source() -> DataSource:
    """Data source with no dimensions, measures or attributes, ready for autofill."""
    return DataSource.from_config({"name": "wiki", "clusterName": "druid", "source": "wiki"})


@pytest.fixture
def introspected_attributes() -> list[Attribute]:
    """A typical first introspection feed."""
    return [
        Attribute("__time", AttributeType.TIME),
        Attribute("channel", AttributeType.STRING),
        Attribute("count", AttributeType.NUMBER, unsplittable=True),
    ]


@pytest.fixture
def unsafe_attributes() -> list[Attribute]:
    """Feed containing names that are not URL safe."""
    return [
        Attribute("__time", AttributeType.TIME),
        Attribute("page:#love$", AttributeType.STRING),
        Attribute("added!!!", AttributeType.NUMBER, unsplittable=True),
        Attribute("user_unique", AttributeType.STRING, special=AttributeSpecial.UNIQUE),
    ]


@pytest.fixture
def sample_frame() -> pl.DataFrame:
    """Small polars frame covering the supported dtypes."""
    return pl.DataFrame(
        {
            "ts": pl.Series([1_700_000_000_000, 1_700_000_060_000]).cast(pl.Datetime("ms")),
            "channel": ["en", "de"],
            "is_robot": [True, False],
            "added": [10, 20],
            "delta_max": [1.5, 2.5],
            "tags": [["a", "b"], ["c"]],
        }
    )


@pytest.fixture
def data_sources_file(tmp_path, wiki_config) -> Path:
    """YAML file with one valid, one legacy and one broken data source."""
    broken = {"name": "broken", "dimensions": [{"name": "a"}], "measures": [{"name": "a"}]}
    legacy = {
        "name": "legacy",
        "engine": "druid",
        "options": {"skipIntrospection": True, "priority": 13},
        "measures": [{"name": "count", "expression": "$main.sum($count)"}],
    }
    path = tmp_path / "data_sources.yaml"
    path.write_text(
        yaml.safe_dump({"clusters": [{"name": "druid"}], "dataSources": [wiki_config, broken, legacy]})
    )
    return path
