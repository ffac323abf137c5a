"""
Schema introspection - turn a store's column schema into an attribute catalog.

Produces the feed consumed by ``add_attributes``. Two stores are supported:
polars DataFrames (dtype checks) and DuckDB tables (``DESCRIBE`` output).
Columns whose type has no attribute counterpart are left out of the catalog.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

import duckdb
import polars as pl
import structlog

from datacube.core.attribute import Attribute, AttributeSpecial, AttributeType, attributes_from_dicts
from datacube.core.errors import ConfigError

logger = structlog.get_logger(__name__)

_NUMERIC_DTYPES = [
    pl.Int8,
    pl.Int16,
    pl.Int32,
    pl.Int64,
    pl.UInt8,
    pl.UInt16,
    pl.UInt32,
    pl.UInt64,
    pl.Float32,
    pl.Float64,
    pl.Decimal,
]

_DUCKDB_NUMERIC = re.compile(
    r"^(TINYINT|SMALLINT|INTEGER|BIGINT|HUGEINT|UTINYINT|USMALLINT|UINTEGER|UBIGINT|UHUGEINT"
    r"|FLOAT|DOUBLE|REAL|DECIMAL(\(\d+,\s*\d+\))?)$"
)
_DUCKDB_TIME = re.compile(r"^(DATE|TIMESTAMP.*)$")


def attributes_from_records(records: Iterable[Mapping[str, Any]]) -> list[Attribute]:
    """
    Build a catalog from raw ``{name, type, special?, unsplittable?}`` records.

    Raises:
        ConfigError: If the feed is not a list of mappings or a record is malformed
    """
    if isinstance(records, (str, bytes)) or not isinstance(records, Iterable):
        raise ConfigError(f"introspection feed must be a list of records, got {type(records).__name__}")
    return list(attributes_from_dicts([dict(record) for record in records]))


def attribute_type_for_dtype(dtype: pl.DataType) -> AttributeType | None:
    """Map a polars dtype to an attribute type; None when there is no counterpart."""
    if dtype in [pl.Datetime, pl.Date]:
        return AttributeType.TIME
    if dtype == pl.Utf8 or dtype == pl.Categorical or dtype == pl.Enum:
        return AttributeType.STRING
    if dtype == pl.Boolean:
        return AttributeType.BOOLEAN
    if dtype in _NUMERIC_DTYPES:
        return AttributeType.NUMBER
    if isinstance(dtype, pl.List):
        inner = attribute_type_for_dtype(dtype.inner)
        if inner is AttributeType.STRING:
            return AttributeType.SET_STRING
        if inner is AttributeType.NUMBER:
            return AttributeType.SET_NUMBER
    return None


def attribute_type_for_duckdb(column_type: str) -> AttributeType | None:
    """Map a DuckDB column type name (as printed by DESCRIBE) to an attribute type."""
    column_type = column_type.upper().strip()
    if column_type.endswith("[]"):
        inner = attribute_type_for_duckdb(column_type[:-2])
        if inner is AttributeType.STRING:
            return AttributeType.SET_STRING
        if inner is AttributeType.NUMBER:
            return AttributeType.SET_NUMBER
        return None
    if _DUCKDB_TIME.match(column_type):
        return AttributeType.TIME
    if column_type in ("VARCHAR", "TEXT", "STRING", "UUID") or column_type.startswith("ENUM"):
        return AttributeType.STRING
    if column_type == "BOOLEAN":
        return AttributeType.BOOLEAN
    if _DUCKDB_NUMERIC.match(column_type):
        return AttributeType.NUMBER
    return None


def _build_catalog(
    columns: Iterable[tuple[str, AttributeType | None, str]],
    unsplittable: Iterable[str],
    special: Mapping[str, str] | None,
) -> list[Attribute]:
    unsplittable = set(unsplittable)
    special = special or {}
    catalog: list[Attribute] = []
    for name, attribute_type, source_type in columns:
        if attribute_type is None:
            logger.info("column_type_unsupported", column=name, source_type=source_type)
            continue
        catalog.append(
            Attribute(
                name=name,
                type=attribute_type,
                special=AttributeSpecial(special[name]) if name in special else None,
                unsplittable=name in unsplittable,
            )
        )
    return catalog


def attributes_from_polars_schema(
    schema: Mapping[str, pl.DataType],
    unsplittable: Iterable[str] = (),
    special: Mapping[str, str] | None = None,
) -> list[Attribute]:
    """
    Convert a polars schema to an attribute catalog, in column order.

    Args:
        schema: Column name -> dtype mapping (``df.schema``)
        unsplittable: Columns holding pre-aggregated values
        special: Column name -> special encoding ("unique" / "histogram")

    Returns:
        Attributes for every column with a supported dtype
    """
    return _build_catalog(
        ((name, attribute_type_for_dtype(dtype), str(dtype)) for name, dtype in schema.items()),
        unsplittable,
        special,
    )


def introspect_frame(
    df: pl.DataFrame,
    unsplittable: Iterable[str] = (),
    special: Mapping[str, str] | None = None,
) -> list[Attribute]:
    """Introspect a polars DataFrame."""
    catalog = attributes_from_polars_schema(df.schema, unsplittable, special)
    logger.debug("frame_introspected", columns=df.width, attributes=len(catalog))
    return catalog


def introspect_duckdb_table(
    con: duckdb.DuckDBPyConnection,
    table: str,
    unsplittable: Iterable[str] = (),
    special: Mapping[str, str] | None = None,
) -> list[Attribute]:
    """
    Introspect a DuckDB table or view via ``DESCRIBE``.

    Args:
        con: Open DuckDB connection
        table: Table or view name (quoted as an identifier)

    Returns:
        Attributes for every column with a supported type, in column order
    """
    quoted = '"' + table.replace('"', '""') + '"'
    rows = con.execute(f"DESCRIBE {quoted}").fetchall()
    catalog = _build_catalog(
        ((row[0], attribute_type_for_duckdb(row[1]), row[1]) for row in rows),
        unsplittable,
        special,
    )
    logger.debug("duckdb_table_introspected", table=table, columns=len(rows), attributes=len(catalog))
    return catalog
