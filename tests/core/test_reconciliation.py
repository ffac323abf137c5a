"""Tests for merging introspected attributes into a data source."""

import pytest
from structlog.testing import capture_logs

from datacube.core.attribute import Attribute, AttributeSpecial, AttributeType
from datacube.core.data_source import DataSource
from datacube.core.errors import ConfigError, SynthesisSkipped
from datacube.core.expression import main_aggregate, ref
from datacube.core.reconciliation import AggregatePolicy, add_attributes, rename_unsafe_attributes


def _summary(data_source: DataSource) -> dict:
    return {
        "dimensions": [(d.name, d.kind, d.expression.to_string()) for d in data_source.dimensions],
        "measures": [(m.name, m.expression.to_string()) for m in data_source.measures],
    }


class TestAddAttributesSynthesis:
    """Test suite for dimension/measure synthesis."""

    def test_add_attributes_to_empty_data_source(self, empty_data_source, introspected_attributes):
        """Test that time, string and unsplittable number columns are synthesized in catalog order."""
        # Act
        result = add_attributes(empty_data_source, introspected_attributes)

        # Assert
        assert _summary(result) == {
            "dimensions": [("__time", "time", "$__time"), ("channel", "string", "$channel")],
            "measures": [("count", "$main.sum($count)")],
        }
        assert result.get_dimension("__time").title == "Time"
        assert result.time_attribute == "__time"
        assert result.default_sort_measure == "count"
        assert result.attributes == tuple(introspected_attributes)

    def test_add_attributes_is_idempotent(self, empty_data_source, introspected_attributes):
        once = add_attributes(empty_data_source, introspected_attributes)

        assert add_attributes(once, introspected_attributes) == once

    def test_add_attributes_second_cycle_appends_new_column(self, empty_data_source, introspected_attributes):
        """Test that a later cycle keeps earlier entries and appends the new one last."""
        first = add_attributes(empty_data_source, introspected_attributes)

        second = add_attributes(first, introspected_attributes + [Attribute("page", AttributeType.STRING)])

        assert second.dimensions[:-1] == first.dimensions
        assert second.dimensions[-1].name == "page"
        assert second.measures == first.measures

    def test_add_attributes_existing_dimension_covers_column(self):
        """Test that a configured dimension on $added prevents another dimension or measure for added."""
        data_source = DataSource.from_config(
            {"name": "wiki", "dimensions": [{"name": "added", "kind": "number"}], "measures": []}
        )

        result = add_attributes(data_source, [Attribute("added", AttributeType.NUMBER, unsplittable=True)])

        assert [d.name for d in result.dimensions] == ["added"]
        assert result.measures == ()

    def test_add_attributes_existing_aggregate_covers_numeric_column(self, wiki_data_source):
        """Test that $main.sum($added) already covers a plain numeric column."""
        result = add_attributes(wiki_data_source, list(wiki_data_source.attributes))

        assert result == wiki_data_source

    def test_add_attributes_plain_number_becomes_number_dimension(self, empty_data_source):
        result = add_attributes(empty_data_source, [Attribute("delta", AttributeType.NUMBER)])

        assert _summary(result)["dimensions"] == [("delta", "number", "$delta")]
        assert result.measures == ()

    def test_add_attributes_boolean_and_set_string(self, empty_data_source):
        result = add_attributes(
            empty_data_source,
            [Attribute("is_robot", AttributeType.BOOLEAN), Attribute("tags", AttributeType.SET_STRING)],
        )

        assert [(d.name, d.kind) for d in result.dimensions] == [("is_robot", "boolean"), ("tags", "string")]

    def test_add_attributes_unique_becomes_count_distinct(self, empty_data_source):
        result = add_attributes(
            empty_data_source, [Attribute("user_unique", AttributeType.STRING, special=AttributeSpecial.UNIQUE)]
        )

        assert result.dimensions == ()
        assert result.measures[0].expression == main_aggregate("countDistinct", "user_unique")

    def test_add_attributes_histogram_never_synthesized(self, empty_data_source):
        result = add_attributes(
            empty_data_source, [Attribute("delta_hist", AttributeType.NUMBER, special=AttributeSpecial.HISTOGRAM)]
        )

        assert result.dimensions == ()
        assert result.measures == ()
        assert result.get_attribute("delta_hist") is not None

    def test_add_attributes_second_time_column_not_synthesized(self, empty_data_source):
        result = add_attributes(
            empty_data_source,
            [Attribute("__time", AttributeType.TIME), Attribute("created_at", AttributeType.TIME)],
        )

        assert [d.name for d in result.dimensions] == ["__time"]

    def test_add_attributes_keeps_stale_dimensions(self, wiki_data_source):
        """Test that entries whose columns disappeared are not pruned."""
        result = add_attributes(wiki_data_source, [Attribute("__time", AttributeType.TIME)])

        assert [d.name for d in result.dimensions] == ["time", "page"]
        assert [m.name for m in result.measures] == ["added", "deleted"]
        assert [a.name for a in result.attributes] == ["__time"]

    def test_add_attributes_does_not_modify_input(self, empty_data_source, introspected_attributes):
        add_attributes(empty_data_source, introspected_attributes)

        assert empty_data_source.dimensions == ()
        assert empty_data_source.attributes == ()


class TestAddAttributesIntrospectionModes:
    """Test suite for introspection gating."""

    @pytest.mark.parametrize("mode", ["none", "no-autofill"])
    def test_modes_without_autofill_only_replace_catalog(self, mode, introspected_attributes):
        data_source = DataSource.from_config({"name": "wiki", "introspection": mode})

        result = add_attributes(data_source, introspected_attributes)

        assert result.dimensions == ()
        assert result.measures == ()
        assert result.attributes == tuple(introspected_attributes)

    def test_dimensions_only(self, introspected_attributes):
        data_source = DataSource.from_config({"name": "wiki", "introspection": "autofill-dimensions-only"})

        result = add_attributes(data_source, introspected_attributes)

        assert [d.name for d in result.dimensions] == ["__time", "channel"]
        assert result.measures == ()

    def test_measures_only(self, introspected_attributes):
        data_source = DataSource.from_config({"name": "wiki", "introspection": "autofill-measures-only"})

        result = add_attributes(data_source, introspected_attributes)

        assert result.dimensions == ()
        assert [m.name for m in result.measures] == ["count"]


class TestAddAttributesRenaming:
    """Test suite for URL-unsafe column names."""

    def test_unsafe_names_are_sanitized(self, empty_data_source, unsafe_attributes):
        result = add_attributes(empty_data_source, unsafe_attributes)

        assert [a.name for a in result.attributes] == ["__time", "page_love_", "added_", "user_unique"]
        assert _summary(result) == {
            "dimensions": [("__time", "time", "$__time"), ("page_love_", "string", "$page_love_")],
            "measures": [("added_", "$main.sum($added_)"), ("user_unique", "$main.countDistinct($user_unique)")],
        }

    def test_unsafe_names_idempotent(self, empty_data_source, unsafe_attributes):
        once = add_attributes(empty_data_source, unsafe_attributes)

        assert add_attributes(once, unsafe_attributes) == once

    def test_existing_expressions_are_rewritten(self):
        data_source = DataSource.from_config(
            {
                "name": "wiki",
                "introspection": "no-autofill",
                "dimensions": [{"name": "page", "expression": "${page:#love$}"}],
                "measures": [{"name": "added", "expression": "$main.sum(${added!!!})"}],
            }
        )

        result = add_attributes(
            data_source,
            [Attribute("page:#love$", AttributeType.STRING), Attribute("added!!!", AttributeType.NUMBER)],
        )

        assert result.get_dimension("page").expression == ref("page_love_")
        assert result.get_measure("added").expression == main_aggregate("sum", "added_")
        assert result.get_issues() == []

    def test_sanitized_name_collision_is_disambiguated(self, empty_data_source):
        result = add_attributes(
            empty_data_source,
            [Attribute("added_", AttributeType.STRING), Attribute("added!!!", AttributeType.STRING)],
        )

        assert [a.name for a in result.attributes] == ["added_", "added_2"]
        assert [d.name for d in result.dimensions] == ["added_", "added_2"]

    def test_rename_disambiguates_against_safe_names(self, empty_data_source):
        """Test that a sanitized name colliding with an existing safe name gets a suffix."""
        attributes = [Attribute("a b", AttributeType.STRING), Attribute("a_b", AttributeType.STRING)]

        renamed, renames = rename_unsafe_attributes(empty_data_source, attributes, AggregatePolicy())

        assert [a.name for a in renamed] == ["a_b_2", "a_b"]
        assert renames == {"a b": "a_b_2"}

    def test_renames_do_not_depend_on_feed_order(self):
        """Test that a reordered feed in a later cycle keeps each dimension on its column."""
        # Arrange
        data_source = DataSource.from_config(
            {
                "name": "wiki",
                "introspection": "no-autofill",
                "dimensions": [{"name": "x", "expression": "${a b}"}],
                "measures": [{"name": "count", "expression": "$main.count()"}],
            }
        )
        feed = [Attribute("a b", AttributeType.STRING), Attribute("a-b", AttributeType.STRING)]

        # Act
        forward = add_attributes(data_source, feed)
        reversed_feed = add_attributes(data_source, list(reversed(feed)))
        second_cycle = add_attributes(forward, list(reversed(feed)))

        # Assert
        assert forward.get_dimension("x").expression == ref("a_b")
        assert reversed_feed.get_dimension("x").expression == ref("a_b")
        assert second_cycle.get_dimension("x").expression == ref("a_b")
        assert [a.name for a in reversed_feed.attributes] == ["a_b_2", "a_b"]


class TestAddAttributesOverridesAndPolicy:
    """Test suite for attribute overrides and the aggregate policy."""

    def test_attribute_override_applies_before_synthesis(self):
        data_source = DataSource.from_config(
            {"name": "wiki", "attributeOverrides": [{"name": "count", "type": "NUMBER", "unsplittable": True}]}
        )

        result = add_attributes(data_source, [Attribute("count", AttributeType.STRING)])

        assert result.dimensions == ()
        assert result.measures[0].expression == main_aggregate("sum", "count")
        assert result.get_attribute("count").type is AttributeType.NUMBER

    @pytest.mark.parametrize(
        "column,aggregate",
        [("delta_min", "min"), ("maxDelta", "max"), ("minute_count", "sum"), ("added", "sum")],
    )
    def test_default_policy_picks_aggregate_by_name_token(self, empty_data_source, column, aggregate):
        result = add_attributes(empty_data_source, [Attribute(column, AttributeType.NUMBER, unsplittable=True)])

        assert result.measures[0].expression == main_aggregate(aggregate, column)

    def test_policy_from_config(self, empty_data_source):
        policy = AggregatePolicy.from_config({"default_aggregate": "average", "max_token": "peak"})

        result = add_attributes(
            empty_data_source,
            [
                Attribute("latency_peak", AttributeType.NUMBER, unsplittable=True),
                Attribute("latency", AttributeType.NUMBER, unsplittable=True),
            ],
            policy=policy,
        )

        assert [m.expression.to_string() for m in result.measures] == [
            "$main.max($latency_peak)",
            "$main.average($latency)",
        ]

    def test_policy_from_config_rejects_unknown_aggregate(self):
        with pytest.raises(ConfigError, match="default_aggregate must be one of"):
            AggregatePolicy.from_config({"default_aggregate": "median"})


class TestAddAttributesCollisions:
    """Test suite for name collisions during synthesis."""

    def test_collision_with_measure_name_is_disambiguated(self):
        data_source = DataSource.from_config(
            {"name": "wiki", "measures": [{"name": "page", "expression": "$main.count()"}]}
        )

        result = add_attributes(data_source, [Attribute("page", AttributeType.STRING)])

        assert [(d.name, d.expression.to_string()) for d in result.dimensions] == [("page_2", "$page")]

    def test_exhausted_collision_is_skipped_with_diagnostic(self):
        data_source = DataSource.from_config(
            {
                "name": "wiki",
                "measures": [
                    {"name": "page", "expression": "$main.count()"},
                    {"name": "page_2", "expression": "$main.count()"},
                ],
            }
        )
        diagnostics: list[SynthesisSkipped] = []

        with capture_logs() as logs:
            result = add_attributes(
                data_source,
                [Attribute("page", AttributeType.STRING)],
                policy=AggregatePolicy(max_name_suffix=2),
                diagnostics=diagnostics,
            )

        assert result.dimensions == ()
        assert diagnostics == [
            SynthesisSkipped(data_source="wiki", attribute="page", kind="dimension", name="page", reason="name collides")
        ]
        assert any(log["event"] == "synthesis_skipped" for log in logs)
