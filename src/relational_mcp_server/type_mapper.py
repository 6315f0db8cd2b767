"""
Vendor column type to semantic category mapping.

The inspector attaches the category to every column as `semanticType` so that
clients can tell which values are safe to treat as numbers. 64-bit integers and
arbitrary precision decimals map to `string` on servers where they can exceed
the range of a double.
"""

import logging
import re
from typing import Dict, Iterable, Mapping

from .models import DatabaseVendor, MappedType, TypeCategory

logger = logging.getLogger(__name__)

NUMBER = TypeCategory.NUMBER
STRING = TypeCategory.STRING
BOOLEAN = TypeCategory.BOOLEAN
BYTES = TypeCategory.BYTES
UNKNOWN = TypeCategory.UNKNOWN

POSTGRESQL_TYPES: Dict[str, TypeCategory] = {
    # numeric
    "smallint": NUMBER,
    "integer": NUMBER,
    "int": NUMBER,
    "int2": NUMBER,
    "int4": NUMBER,
    "int8": STRING,
    "bigint": STRING,
    "serial": NUMBER,
    "bigserial": STRING,
    "smallserial": NUMBER,
    "real": NUMBER,
    "float4": NUMBER,
    "double precision": NUMBER,
    "float8": NUMBER,
    "numeric": STRING,
    "decimal": STRING,
    "money": STRING,
    # text
    "text": STRING,
    "character varying": STRING,
    "varchar": STRING,
    "char": STRING,
    "character": STRING,
    "name": STRING,
    "citext": STRING,
    "boolean": BOOLEAN,
    "bool": BOOLEAN,
    # date/time
    "date": STRING,
    "timestamp": STRING,
    "timestamp with time zone": STRING,
    "timestamp without time zone": STRING,
    "timestamptz": STRING,
    "time": STRING,
    "time with time zone": STRING,
    "time without time zone": STRING,
    "timetz": STRING,
    "interval": STRING,
    "json": UNKNOWN,
    "jsonb": UNKNOWN,
    "bytea": BYTES,
    "uuid": STRING,
    # network
    "inet": STRING,
    "cidr": STRING,
    "macaddr": STRING,
    "macaddr8": STRING,
    # geometric
    "point": STRING,
    "line": STRING,
    "lseg": STRING,
    "box": STRING,
    "path": STRING,
    "polygon": STRING,
    "circle": STRING,
    "xml": STRING,
    "tsvector": STRING,
    "tsquery": STRING,
    "oid": NUMBER,
}

MYSQL_TYPES: Dict[str, TypeCategory] = {
    # numeric
    "tinyint": NUMBER,
    "smallint": NUMBER,
    "mediumint": NUMBER,
    "int": NUMBER,
    "integer": NUMBER,
    "bigint": STRING,
    "float": NUMBER,
    "double": NUMBER,
    "double precision": NUMBER,
    "decimal": STRING,
    "dec": STRING,
    "numeric": STRING,
    "bit": NUMBER,
    # text
    "char": STRING,
    "varchar": STRING,
    "tinytext": STRING,
    "text": STRING,
    "mediumtext": STRING,
    "longtext": STRING,
    "enum": STRING,
    "set": STRING,
    "boolean": BOOLEAN,
    "bool": BOOLEAN,
    # binary
    "binary": BYTES,
    "varbinary": BYTES,
    "tinyblob": BYTES,
    "blob": BYTES,
    "mediumblob": BYTES,
    "longblob": BYTES,
    # date/time
    "date": STRING,
    "datetime": STRING,
    "timestamp": STRING,
    "time": STRING,
    "year": NUMBER,
    "json": UNKNOWN,
    # spatial
    "geometry": STRING,
    "point": STRING,
    "linestring": STRING,
    "polygon": STRING,
}

# Declared SQLite types are advisory; these are the common spellings.
SQLITE_TYPES: Dict[str, TypeCategory] = {
    "integer": NUMBER,
    "int": NUMBER,
    "tinyint": NUMBER,
    "smallint": NUMBER,
    "mediumint": NUMBER,
    "bigint": NUMBER,
    "real": NUMBER,
    "double": NUMBER,
    "double precision": NUMBER,
    "float": NUMBER,
    "numeric": NUMBER,
    "decimal": NUMBER,
    "boolean": NUMBER,
    "text": STRING,
    "varchar": STRING,
    "char": STRING,
    "clob": STRING,
    "character varying": STRING,
    "native character": STRING,
    "nchar": STRING,
    "nvarchar": STRING,
    "blob": BYTES,
    "date": STRING,
    "datetime": STRING,
    "timestamp": STRING,
    "json": UNKNOWN,
}

VENDOR_TYPES: Dict[DatabaseVendor, Dict[str, TypeCategory]] = {
    DatabaseVendor.POSTGRESQL: POSTGRESQL_TYPES,
    DatabaseVendor.MYSQL: MYSQL_TYPES,
    DatabaseVendor.SQLITE: SQLITE_TYPES,
}

BIG_INTEGER_TYPES = {"bigint", "int8", "bigserial"}
BIG_INTEGER_NOTE = "Mapped to string to avoid precision loss for 64-bit integers"

_ARRAY_SUFFIX = re.compile(r"\[\]$")
_SIZE_SUFFIX = re.compile(r"\([\d,\s]+\)")
_UNSIGNED_SUFFIX = re.compile(r"\s+unsigned$")


def normalize_type(raw_type: str) -> str:
    """Lower-case a raw type and strip array, size/precision and `unsigned` decorations."""
    normalized = (raw_type or "").lower().strip()
    normalized = _ARRAY_SUFFIX.sub("", normalized)
    normalized = _SIZE_SUFFIX.sub("", normalized, count=1)
    normalized = _UNSIGNED_SUFFIX.sub("", normalized)
    return normalized.strip()


def map_column_type(vendor, raw_type: str, nullable: bool = False) -> MappedType:
    """
    Map a raw column type to its semantic category.

    Never raises. Unsupported vendors and unmapped types produce `unknown`
    with an explanatory note.
    """
    try:
        type_map = VENDOR_TYPES[DatabaseVendor(vendor)]
    except ValueError:
        return MappedType(
            category=UNKNOWN,
            raw_type=raw_type,
            normalized_type=normalize_type(raw_type),
            nullable=nullable,
            note=f"Unsupported vendor: {vendor}",
        )

    normalized = normalize_type(raw_type)
    category = type_map.get(normalized, UNKNOWN)
    note = None

    if normalized not in type_map:
        note = f'No explicit mapping for "{raw_type}"; defaulting to unknown'
        logger.debug(f"Unmapped database type '{raw_type}'", extra={"vendor": str(vendor), "normalized": normalized})

    if normalized in BIG_INTEGER_TYPES and DatabaseVendor(vendor) != DatabaseVendor.SQLITE:
        note = BIG_INTEGER_NOTE

    return MappedType(
        category=category,
        raw_type=raw_type,
        normalized_type=normalized,
        nullable=nullable,
        note=note,
    )


def map_schema_types(vendor, columns: Iterable[Mapping]) -> Dict[str, Dict[str, MappedType]]:
    """
    Map a flat list of column descriptions into `{table: {column: MappedType}}`.

    Each entry needs `table`, `name`, `type` and `nullable` keys.
    """
    result: Dict[str, Dict[str, MappedType]] = {}
    for column in columns:
        table_types = result.setdefault(column["table"], {})
        table_types[column["name"]] = map_column_type(vendor, column["type"], bool(column.get("nullable", False)))
    return result


def get_vendor_type_map(vendor) -> Dict[str, TypeCategory]:
    """Copy of the mapping table for a vendor."""
    return dict(VENDOR_TYPES[DatabaseVendor(vendor)])
