"""
Attribute catalog types.

An Attribute is a physical column as reported by introspection. Attributes are
immutable; a refresh cycle replaces the whole catalog.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from datacube.core.errors import ConfigError

if TYPE_CHECKING:
    from datacube.core.expression import Expression


class AttributeType(Enum):
    """Primitive column types. DATASET is only ever the type of ``$main``."""

    TIME = "TIME"
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    SET_STRING = "SET_STRING"
    SET_NUMBER = "SET_NUMBER"
    NUMBER_RANGE = "NUMBER_RANGE"
    TIME_RANGE = "TIME_RANGE"
    DATASET = "DATASET"


class AttributeSpecial(Enum):
    """Special column encodings produced by the store."""

    UNIQUE = "unique"
    HISTOGRAM = "histogram"


# Persisted type spellings from older configs
_TYPE_ALIASES = {
    "SET/STRING": AttributeType.SET_STRING,
    "SET/NUMBER": AttributeType.SET_NUMBER,
}


def parse_attribute_type(value: str) -> AttributeType:
    """Parse a persisted type name. DATASET is rejected: no column can hold it."""
    if value in _TYPE_ALIASES:
        return _TYPE_ALIASES[value]
    try:
        attribute_type = AttributeType(value)
    except ValueError as e:
        raise ConfigError(f"unknown attribute type '{value}'") from e
    if attribute_type is AttributeType.DATASET:
        raise ConfigError("attribute type 'DATASET' is reserved for $main")
    return attribute_type


@dataclass(frozen=True)
class Attribute:
    """
    A physical column.

    Attributes:
        name: Column name (identity within a catalog)
        type: Primitive type
        special: Optional special encoding (unique/histogram)
        unsplittable: True for pre-aggregated columns that can not be grouped on
        derivation: Optional expression deriving this column from others
    """

    name: str
    type: AttributeType = AttributeType.STRING
    special: AttributeSpecial | None = None
    unsplittable: bool = False
    derivation: "Expression | None" = None

    def with_name(self, name: str) -> "Attribute":
        return Attribute(
            name=name,
            type=self.type,
            special=self.special,
            unsplittable=self.unsplittable,
            derivation=self.derivation,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted attribute shape."""
        result: dict[str, Any] = {"name": self.name, "type": self.type.value}
        if self.special is not None:
            result["special"] = self.special.value
        if self.unsplittable:
            result["unsplittable"] = True
        if self.derivation is not None:
            result["derivation"] = self.derivation.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attribute":
        """
        Deserialize an attribute record.

        Accepts the legacy ``unsplitable`` spelling. Missing ``type`` means STRING.

        Raises:
            ConfigError: On missing name or unknown type/special
        """
        from datacube.core.expression import Expression

        if not isinstance(data, dict) or not data.get("name"):
            raise ConfigError(f"attribute must have a name: {data!r}")

        special = data.get("special")
        if special is not None:
            try:
                special = AttributeSpecial(special)
            except ValueError as e:
                raise ConfigError(f"unknown special '{special}' on attribute '{data['name']}'") from e

        derivation = data.get("derivation")
        return cls(
            name=data["name"],
            type=parse_attribute_type(data.get("type") or AttributeType.STRING.value),
            special=special,
            unsplittable=bool(data.get("unsplittable", data.get("unsplitable", False))),
            derivation=Expression.from_config(derivation) if derivation is not None else None,
        )


def attributes_from_dicts(records: list[dict[str, Any]] | None) -> tuple[Attribute, ...]:
    return tuple(Attribute.from_dict(record) for record in records or [])
