"""Core models: attributes, expressions, data sources and their reconciliation."""

from datacube.core.attribute import Attribute, AttributeSpecial, AttributeType
from datacube.core.data_source import DataSource
from datacube.core.dimension import Dimension
from datacube.core.errors import (
    ConfigError,
    DatacubeError,
    ExpressionReferenceError,
    ExpressionSyntaxError,
    NamingError,
    ResolutionError,
    SynthesisSkipped,
    TypeMismatchError,
    ValidationError,
)
from datacube.core.expression import Expression, parse_expression, resolve
from datacube.core.measure import Measure
from datacube.core.reconciliation import AggregatePolicy, add_attributes
from datacube.core.registry import DataSourceRegistry, PublishedDataSource
from datacube.core.splits import Colors, SplitCombine, Splits

__all__ = [
    "add_attributes",
    "AggregatePolicy",
    "Attribute",
    "AttributeSpecial",
    "AttributeType",
    "Colors",
    "ConfigError",
    "DatacubeError",
    "DataSource",
    "DataSourceRegistry",
    "Dimension",
    "Expression",
    "ExpressionReferenceError",
    "ExpressionSyntaxError",
    "Measure",
    "NamingError",
    "parse_expression",
    "PublishedDataSource",
    "resolve",
    "ResolutionError",
    "SplitCombine",
    "Splits",
    "SynthesisSkipped",
    "TypeMismatchError",
    "ValidationError",
]
