"""
Logical column types and default-expression normalization for schemasync.

Catalog entries and introspected columns are both reduced to the same
canonical vocabulary so the differ can compare them by plain equality.
"""

import re
from enum import Enum
from typing import Optional, Tuple


class ColumnType(str, Enum):
    """Canonical logical column types."""

    SMALLINT = "smallint"
    INTEGER = "integer"
    BIGINT = "bigint"
    NUMERIC = "numeric"
    REAL = "real"
    DOUBLE = "double precision"
    BOOLEAN = "boolean"
    VARCHAR = "varchar"
    CHAR = "char"
    TEXT = "text"
    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"
    TIMESTAMPTZ = "timestamptz"
    INTERVAL = "interval"
    JSON = "json"
    JSONB = "jsonb"
    UUID = "uuid"
    BYTEA = "bytea"

    @property
    def has_length(self) -> bool:
        """Check if the type takes a length modifier."""
        return self in (ColumnType.VARCHAR, ColumnType.CHAR)

    @property
    def has_precision(self) -> bool:
        """Check if the type takes precision and scale modifiers."""
        return self == ColumnType.NUMERIC

    @property
    def is_integer(self) -> bool:
        """Check if the type can back an identity column."""
        return self in (ColumnType.SMALLINT, ColumnType.INTEGER, ColumnType.BIGINT)


TYPE_ALIASES = {
    "int": ColumnType.INTEGER,
    "int4": ColumnType.INTEGER,
    "int8": ColumnType.BIGINT,
    "int2": ColumnType.SMALLINT,
    "decimal": ColumnType.NUMERIC,
    "float4": ColumnType.REAL,
    "float8": ColumnType.DOUBLE,
    "float": ColumnType.DOUBLE,
    "double": ColumnType.DOUBLE,
    "bool": ColumnType.BOOLEAN,
    "string": ColumnType.VARCHAR,
    "character varying": ColumnType.VARCHAR,
    "character": ColumnType.CHAR,
    "timestamp without time zone": ColumnType.TIMESTAMP,
    "timestamp with time zone": ColumnType.TIMESTAMPTZ,
    "time without time zone": ColumnType.TIME,
}

_TYPE_SPEC = re.compile(r"^\s*([a-z][a-z0-9_ ]*?)\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?\s*$")
_TRAILING_CAST = re.compile(r"::[a-z_][a-z0-9_ ]*(?:\(\d+(?:,\s*\d+)?\))?(?:\[\])?\s*$", re.IGNORECASE)
_QUOTED = re.compile(r"('(?:[^']|'')*')")
_QUOTED_NUMBER = re.compile(r"^'(-?\d+(?:\.\d+)?)'$")


def lookup_type(name: str) -> Optional[ColumnType]:
    """Resolve a type name or alias to its canonical ColumnType."""
    key = " ".join(name.strip().lower().split())
    try:
        return ColumnType(key)
    except ValueError:
        return TYPE_ALIASES.get(key)


def parse_type_spec(spec: str) -> Tuple[Optional[ColumnType], Optional[int], Optional[int]]:
    """
    Split a catalog type string such as ``varchar(255)`` or ``numeric(10, 2)``.

    Returns the canonical type (None when unknown) and the optional first and
    second modifiers.
    """
    match = _TYPE_SPEC.match(spec.lower())
    if not match:
        return None, None, None
    base, first, second = match.groups()
    return (
        lookup_type(base),
        int(first) if first is not None else None,
        int(second) if second is not None else None,
    )


def normalize_type_name(name: str) -> str:
    """Canonical name for a type, or the raw lowercase name if unsupported."""
    column_type = lookup_type(name)
    if column_type is not None:
        return column_type.value
    return " ".join(name.strip().lower().split())


def _strip_outer_parens(expression: str) -> str:
    while expression.startswith("(") and expression.endswith(")"):
        depth = 0
        for i, char in enumerate(expression):
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            if depth == 0 and i < len(expression) - 1:
                return expression
        expression = expression[1:-1].strip()
    return expression


def normalize_default(expression: Optional[str]) -> Optional[str]:
    """
    Normalize a column default for comparison.

    PostgreSQL reports ``'active'::character varying`` for a default that was
    declared as ``'active'``; both normalize to the same string.
    """
    if expression is None:
        return None
    result = expression.strip()
    if not result or result.upper() == "NULL":
        return None

    previous = None
    while previous != result:
        previous = result
        result = _strip_outer_parens(result)
        result = _TRAILING_CAST.sub("", result).strip()

    # Negative numbers come back quoted, as in '-1'::integer
    number = _QUOTED_NUMBER.match(result)
    if number:
        result = number.group(1)

    # Lowercase everything outside string literals
    parts = _QUOTED.split(result)
    return "".join(
        part if part.startswith("'") else part.lower()
        for part in parts
    )
