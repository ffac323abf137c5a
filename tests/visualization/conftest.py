"""Fixtures for visualization tests."""

import pytest

from datacube.core.data_source import DataSource


@pytest.fixture
def cube(wiki_config) -> DataSource:
    """Wiki data source with one time and two string dimensions."""
    wiki_config["attributes"].append({"name": "channel", "type": "STRING"})
    wiki_config["dimensions"].append({"name": "channel"})
    return DataSource.from_config(wiki_config)


@pytest.fixture
def no_time_cube() -> DataSource:
    return DataSource.from_config(
        {
            "name": "sales",
            "attributes": [{"name": "region", "type": "STRING"}, {"name": "amount", "type": "NUMBER"}],
            "dimensions": [{"name": "region"}],
            "measures": [{"name": "amount", "expression": "$main.sum($amount)"}],
        }
    )
