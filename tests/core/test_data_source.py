"""Tests for DataSource construction, validation and serialization."""

import pytest

from datacube.core.attribute import Attribute, AttributeType
from datacube.core.data_source import DataSource
from datacube.core.errors import ConfigError, NamingError, ValidationError
from datacube.core.expression import Expression, main_aggregate


class TestDataSourceFromConfig:
    """Test suite for DataSource.from_config."""

    def test_from_config_builds_dimensions_and_measures_in_order(self, wiki_data_source):
        # Assert: declaration order is kept and defaults are filled
        assert [d.name for d in wiki_data_source.dimensions] == ["time", "page"]
        assert [m.name for m in wiki_data_source.measures] == ["added", "deleted"]
        assert wiki_data_source.get_dimension("page").title == "Page"
        assert wiki_data_source.get_dimension("page").kind == "string"

    def test_from_config_derives_time_attribute_and_sort_measure(self, wiki_data_source):
        assert wiki_data_source.time_attribute == "__time"
        assert wiki_data_source.default_sort_measure == "added"

    def test_from_config_unsafe_data_source_name_raises(self, wiki_config):
        wiki_config["name"] = "wiki hello"

        with pytest.raises(NamingError, match="Try 'wiki_hello' instead"):
            DataSource.from_config(wiki_config)

    def test_from_config_unsafe_dimension_name_raises(self, wiki_config):
        wiki_config["dimensions"].append({"name": "page:#love$"})

        with pytest.raises(NamingError, match="'page:#love\\$' is not a URL safe name"):
            DataSource.from_config(wiki_config)

    def test_from_config_dimension_and_measure_sharing_name_raises(self, wiki_config):
        wiki_config["dimensions"].append({"name": "added"})

        with pytest.raises(NamingError) as exc_info:
            DataSource.from_config(wiki_config)

        assert str(exc_info.value) == "name 'added' found in both dimensions and measures in data source: 'wiki'"

    def test_from_config_unknown_default_sort_measure_raises(self, wiki_config):
        wiki_config["defaultSortMeasure"] = "nope"

        with pytest.raises(ValidationError, match="can not find defaultSortMeasure 'nope'"):
            DataSource.from_config(wiki_config)

    def test_from_config_unknown_cluster_raises(self, wiki_config):
        with pytest.raises(ConfigError, match="can not find cluster 'druid'"):
            DataSource.from_config(wiki_config, {"clusters": {"other"}})

    def test_from_config_native_cluster_always_accepted(self, wiki_config):
        wiki_config["clusterName"] = "native"

        data_source = DataSource.from_config(wiki_config, {"clusters": set()})

        assert data_source.cluster_name == "native"

    def test_from_config_unknown_introspection_raises(self, wiki_config):
        wiki_config["introspection"] = "sometimes"

        with pytest.raises(ConfigError, match="unknown introspection 'sometimes'"):
            DataSource.from_config(wiki_config)

    def test_from_config_duplicate_attribute_raises(self, wiki_config):
        wiki_config["attributes"].append({"name": "page", "type": "STRING"})

        with pytest.raises(NamingError, match="duplicate attribute name 'page'"):
            DataSource.from_config(wiki_config)

    def test_from_config_measure_expression_defaults_to_sum(self, wiki_config):
        wiki_config["measures"].append({"name": "count"})

        data_source = DataSource.from_config(wiki_config)

        assert data_source.get_measure("count").expression == main_aggregate("sum", "count")

    def test_from_config_default_introspection_comes_from_context(self, wiki_config):
        del wiki_config["introspection"]

        data_source = DataSource.from_config(wiki_config, {"default_introspection": "no-autofill"})

        assert data_source.introspection == "no-autofill"


class TestDataSourceIssues:
    """Test suite for get_issues."""

    def test_get_issues_valid_data_source_has_none(self, wiki_data_source):
        assert wiki_data_source.get_issues() == []

    def test_get_issues_dimension_missing_column(self, wiki_config):
        wiki_config["dimensions"].append({"name": "language", "expression": "$lang"})

        issues = DataSource.from_config(wiki_config).get_issues()

        assert issues == ["failed to validate dimension 'language': could not resolve $lang"]

    def test_get_issues_measure_without_main(self, wiki_config):
        wiki_config["measures"].append({"name": "broken", "expression": "$added"})

        issues = DataSource.from_config(wiki_config).get_issues()

        assert issues == ["failed to validate measure 'broken': measure must contain a $main reference"]

    def test_get_issues_measure_without_main_reported_even_without_catalog(self, wiki_config):
        wiki_config["attributes"] = []
        wiki_config["measures"] = [{"name": "broken", "expression": "$nothing"}]
        wiki_config["dimensions"] = []

        issues = DataSource.from_config(wiki_config).get_issues()

        assert issues == ["failed to validate measure 'broken': measure must contain a $main reference"]

    def test_get_issues_dimension_with_main(self, wiki_config):
        wiki_config["dimensions"].append({"name": "bad", "expression": "$main.count()"})

        issues = DataSource.from_config(wiki_config).get_issues()

        assert issues == ["failed to validate dimension 'bad': dimension must not contain a $main reference"]

    def test_get_issues_measure_type_mismatch(self, wiki_config):
        wiki_config["measures"].append({"name": "pages", "expression": "$main.sum($page)"})

        issues = DataSource.from_config(wiki_config).get_issues()

        assert issues == [
            "failed to validate measure 'pages': sum must have expression of type NUMBER (is STRING)"
        ]

    def test_get_issues_derived_dimension_resolves_through_other_dimension(self, wiki_config):
        """Test that a dimension may reference another dimension by name."""
        wiki_config["dimensions"].append({"name": "page_upper", "expression": "$page ++ '!'"})
        wiki_config["dimensions"].append({"name": "page_twice", "expression": "$page_upper ++ $page_upper"})

        data_source = DataSource.from_config(wiki_config)

        assert data_source.get_issues() == []

    def test_get_issues_collects_every_problem_in_declaration_order(self):
        """Test that dimension issues come first, then measure issues, each in declaration order."""
        # Arrange
        data_source = DataSource.from_config(
            {
                "name": "wiki",
                "clusterName": "druid",
                "source": "wiki",
                "attributes": [
                    {"name": "__time", "type": "TIME"},
                    {"name": "articleName", "type": "STRING"},
                    {"name": "count", "type": "NUMBER"},
                ],
                "dimensions": [
                    {"name": "gaga", "expression": "$gaga"},
                    {"name": "bucketArticleName", "expression": "$articleName.numberBucket(5)"},
                ],
                "measures": [
                    {"name": "count", "expression": "$main.sum($count)"},
                    {"name": "added", "expression": "$main.sum($added)"},
                    {"name": "sumArticleName", "expression": "$main.sum($articleName)"},
                    {"name": "koalaCount", "expression": "$koala.sum($count)"},
                    {"name": "countByThree", "expression": "$count / 3"},
                ],
            }
        )

        # Act
        issues = data_source.get_issues()

        # Assert
        assert issues == [
            "failed to validate dimension 'gaga': could not resolve $gaga",
            "failed to validate dimension 'bucketArticleName': "
            "numberBucket must have input of type NUMBER or NUMBER_RANGE (is STRING)",
            "failed to validate measure 'added': could not resolve $added",
            "failed to validate measure 'sumArticleName': sum must have expression of type NUMBER (is STRING)",
            "failed to validate measure 'koalaCount': measure must contain a $main reference",
            "failed to validate measure 'countByThree': measure must contain a $main reference",
        ]


class TestDataSourceLookups:
    """Test suite for name and expression lookups."""

    def test_lookup_by_expression_uses_structural_equality(self, wiki_data_source):
        assert wiki_data_source.get_measure_by_expression(main_aggregate("sum", "deleted")).name == "deleted"
        assert wiki_data_source.get_dimension_by_expression(Expression.from_config("$page")).name == "page"
        assert wiki_data_source.get_measure_by_expression(main_aggregate("max", "deleted")) is None


class TestDataSourceSerialization:
    """Test suite for to_dict."""

    def test_to_dict_uses_canonical_keys(self, wiki_data_source):
        result = wiki_data_source.to_dict()

        assert result["clusterName"] == "druid"
        assert result["introspection"] == "autofill-all"
        assert result["subsetFilter"] is None
        assert result["defaultFilter"] == {"op": "literal", "value": True}
        assert result["refreshRule"] == {"rule": "query", "refresh": "PT1M"}
        assert "options" not in result

    def test_to_dict_round_trips_through_from_config(self, wiki_data_source):
        assert DataSource.from_config(wiki_data_source.to_dict()) == wiki_data_source

    def test_attribute_types_survive_round_trip(self, wiki_data_source):
        rebuilt = DataSource.from_config(wiki_data_source.to_dict())

        assert rebuilt.get_attribute("__time").type is AttributeType.TIME

    def test_legacy_config_serializes_in_canonical_shape(self):
        data_source = DataSource.from_config(
            {"name": "wiki", "engine": "druid", "options": {"skipIntrospection": True, "priority": 13}}
        )

        result = data_source.to_dict()

        assert result["clusterName"] == "druid"
        assert result["introspection"] == "none"
        assert result["options"] == {"priority": 13}
        assert "engine" not in result


class TestDataSourceFunctionalUpdates:
    """Test suite for change_attributes and change."""

    def test_change_attributes_replaces_catalog_only(self, wiki_data_source):
        catalog = [Attribute("__time", AttributeType.TIME), Attribute("channel", AttributeType.STRING)]

        changed = wiki_data_source.change_attributes(catalog)

        assert changed.attributes == tuple(catalog)
        assert changed.dimensions == wiki_data_source.dimensions
        assert wiki_data_source.get_attribute("channel") is None

    def test_change_rejects_unknown_field(self, wiki_data_source):
        assert wiki_data_source.change(title="Wikipedia").title == "Wikipedia"

        with pytest.raises(TypeError):
            wiki_data_source.change(colour="red")

    def test_options_are_read_only_across_versions(self):
        """Test that a new version can not change the options of the one it came from."""
        data_source = DataSource.from_config(
            {"name": "wiki", "options": {"priority": 13, "druidContext": {"timeout": 1000}}}
        )
        merged = data_source.add_attributes([Attribute("page", AttributeType.STRING)])

        with pytest.raises(TypeError):
            merged.options["priority"] = 99
        with pytest.raises(TypeError):
            merged.options["druidContext"]["timeout"] = 1

        assert data_source.options == {"priority": 13, "druidContext": {"timeout": 1000}}
        assert data_source.to_dict()["options"] == {"priority": 13, "druidContext": {"timeout": 1000}}

    def test_data_source_is_hashable(self, wiki_data_source):
        rebuilt = DataSource.from_config(wiki_data_source.to_dict())

        assert hash(rebuilt) == hash(wiki_data_source)
