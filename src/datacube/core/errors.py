"""
Error taxonomy for data source loading and validation.

Construction-time errors (naming, config) abort the load of a single data
source. Resolution errors never escape the DataSource: they are collected by
``DataSource.get_issues()`` as advisory strings.
"""

from dataclasses import dataclass


class DatacubeError(Exception):
    """Base class for all datacube errors."""


class ValidationError(DatacubeError, ValueError):
    """A data source definition violates an invariant."""


class NamingError(ValidationError):
    """Unsafe or duplicate dimension/measure/data source name."""


class ConfigError(DatacubeError, ValueError):
    """Malformed or unrecognized configuration shape."""


class ExpressionSyntaxError(ConfigError):
    """Expression text could not be parsed."""


class ResolutionError(DatacubeError):
    """An expression could not be resolved against an attribute catalog."""


class ExpressionReferenceError(ResolutionError):
    """A reference names a column that is not in the catalog."""


class TypeMismatchError(ResolutionError):
    """An operation received an operand of the wrong type."""


@dataclass(frozen=True)
class SynthesisSkipped:
    """
    Diagnostic record for an attribute that could not be auto-filled.

    Not an error: ``add_attributes`` skips the synthesis and carries on.

    Attributes:
        data_source: Name of the data source being merged
        attribute: Attribute whose dimension/measure was not synthesized
        kind: "dimension" or "measure"
        name: The name that collided
        reason: Human-readable explanation
    """

    data_source: str
    attribute: str
    kind: str
    name: str
    reason: str
