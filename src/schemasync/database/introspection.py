"""
Database schema introspection for schemasync.

Reads tables, columns, primary keys, indexes and foreign keys of one
PostgreSQL schema into a SchemaSnapshot. All metadata queries run inside a
single read-only REPEATABLE READ transaction so the snapshot describes one
point in time.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from ..exceptions import DatabaseConnectionError, IntrospectionError
from ..schema.models import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    SchemaSnapshot,
    TableDefinition,
)
from ..schema.types import ColumnType, lookup_type, normalize_type_name
from .connection import TRANSPORT_ERRORS


logger = logging.getLogger(__name__)


# pg_constraint.confdeltype / confupdtype codes
FOREIGN_KEY_ACTION_CODES = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}


TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = $1
    AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

COLUMNS_QUERY = """
    SELECT
        c.table_name,
        c.column_name,
        c.data_type,
        c.udt_name,
        c.is_nullable,
        c.column_default,
        c.character_maximum_length,
        c.numeric_precision,
        c.numeric_scale,
        c.is_identity,
        c.ordinal_position
    FROM information_schema.columns c
    JOIN information_schema.tables t
        ON t.table_schema = c.table_schema AND t.table_name = c.table_name
    WHERE c.table_schema = $1
    AND t.table_type = 'BASE TABLE'
    ORDER BY c.table_name, c.ordinal_position
"""

CONSTRAINTS_QUERY = """
    SELECT
        cl.relname AS table_name,
        con.conname AS constraint_name,
        con.contype::text AS constraint_type,
        cardinality(con.conkey) AS key_count,
        ARRAY(
            SELECT a.attname
            FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ) AS columns,
        ref.relname AS referenced_table,
        refns.nspname AS referenced_schema,
        ARRAY(
            SELECT a.attname
            FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ) AS referenced_columns,
        con.confdeltype::text AS on_delete,
        con.confupdtype::text AS on_update
    FROM pg_constraint con
    JOIN pg_class cl ON cl.oid = con.conrelid
    JOIN pg_namespace ns ON ns.oid = cl.relnamespace
    LEFT JOIN pg_class ref ON ref.oid = con.confrelid
    LEFT JOIN pg_namespace refns ON refns.oid = ref.relnamespace
    WHERE ns.nspname = $1
    AND con.contype IN ('p', 'f')
    ORDER BY cl.relname, con.conname
"""

INDEXES_QUERY = """
    SELECT
        t.relname AS table_name,
        i.relname AS index_name,
        ix.indisunique AS is_unique,
        ix.indexprs IS NOT NULL OR ix.indpred IS NOT NULL AS is_partial_or_expression,
        ARRAY(
            SELECT a.attname
            FROM unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = ix.indrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ) AS columns
    FROM pg_index ix
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    WHERE n.nspname = $1
    AND t.relkind = 'r'
    AND NOT ix.indisprimary
    ORDER BY t.relname, i.relname
"""


class SchemaIntrospector:
    """Captures SchemaSnapshots from a live PostgreSQL database."""

    def __init__(self, schema: str = "public"):
        self.schema = schema

    async def capture_snapshot(
        self, connection: asyncpg.Connection, schema: Optional[str] = None
    ) -> SchemaSnapshot:
        """
        Read the full structure of ``schema`` in one consistent pass.

        Raises:
            DatabaseConnectionError: if the connection fails
            IntrospectionError: if the metadata is malformed or unreadable
        """
        schema = schema or self.schema
        try:
            async with connection.transaction(isolation="repeatable_read", readonly=True):
                table_rows = await connection.fetch(TABLES_QUERY, schema)
                column_rows = await connection.fetch(COLUMNS_QUERY, schema)
                constraint_rows = await connection.fetch(CONSTRAINTS_QUERY, schema)
                index_rows = await connection.fetch(INDEXES_QUERY, schema)
        except TRANSPORT_ERRORS as e:
            logger.error(f"Connection failed while introspecting schema '{schema}': {e}")
            raise DatabaseConnectionError(
                f"Connection failed during introspection: {e}", cause=e
            ) from e
        except asyncpg.exceptions.PostgresError as e:
            logger.error(f"Error introspecting schema '{schema}': {e}")
            raise IntrospectionError(f"Failed to read schema metadata: {e}", cause=e) from e

        try:
            snapshot = self.build_snapshot(
                schema, table_rows, column_rows, constraint_rows, index_rows
            )
        except (KeyError, TypeError, ValueError) as e:
            raise IntrospectionError(
                f"Malformed metadata for schema '{schema}': {e}", cause=e
            ) from e

        logger.info(f"Captured snapshot of schema '{schema}' with {len(snapshot)} tables")
        return snapshot

    def build_snapshot(
        self,
        schema: str,
        table_rows: List[Any],
        column_rows: List[Any],
        constraint_rows: List[Any],
        index_rows: List[Any],
    ) -> SchemaSnapshot:
        """Assemble a snapshot from the raw metadata rows."""
        names = [row["table_name"] for row in table_rows]
        if any(not name for name in names):
            raise IntrospectionError(f"Table without a name in schema '{schema}'")

        columns: Dict[str, List[ColumnDefinition]] = {name: [] for name in names}
        for row in column_rows:
            table_name = row["table_name"]
            if table_name not in columns:
                continue
            columns[table_name].append(self._column_from_row(table_name, row))

        primary_keys: Dict[str, Tuple[str, Tuple[str, ...]]] = {}
        foreign_keys: Dict[str, List[ForeignKeyDefinition]] = {name: [] for name in names}
        for row in constraint_rows:
            table_name = row["table_name"]
            if table_name not in columns:
                continue
            key_columns = tuple(row["columns"] or ())
            if not key_columns or len(key_columns) != row["key_count"]:
                raise IntrospectionError(
                    f"Constraint '{row['constraint_name']}' on '{table_name}' "
                    f"has unresolved columns"
                )
            if row["constraint_type"] == "p":
                primary_keys[table_name] = (row["constraint_name"], key_columns)
            else:
                foreign_keys[table_name].append(self._foreign_key_from_row(schema, row))

        indexes: Dict[str, List[IndexDefinition]] = {name: [] for name in names}
        for row in index_rows:
            table_name = row["table_name"]
            if table_name not in indexes:
                continue
            if row["is_partial_or_expression"]:
                logger.debug(
                    f"Skipping partial or expression index '{row['index_name']}' "
                    f"on '{table_name}'"
                )
                continue
            indexes[table_name].append(
                IndexDefinition(
                    name=row["index_name"],
                    columns=tuple(row["columns"]),
                    unique=bool(row["is_unique"]),
                )
            )

        tables = []
        for name in names:
            pk_name, pk_columns = primary_keys.get(name, (None, ()))
            tables.append(
                TableDefinition(
                    name=name,
                    columns=tuple(columns[name]),
                    primary_key=pk_columns,
                    indexes=frozenset(indexes[name]),
                    foreign_keys=frozenset(foreign_keys[name]),
                    primary_key_name=pk_name,
                )
            )

        return SchemaSnapshot.from_tables(tables, schema=schema)

    @staticmethod
    def _column_from_row(table_name: str, row: Any) -> ColumnDefinition:
        name = row["column_name"]
        data_type = row["data_type"]
        if not name or not data_type:
            raise IntrospectionError(f"Column metadata incomplete for table '{table_name}'")

        # User-defined and array types only carry their real name in udt_name
        if data_type in ("USER-DEFINED", "ARRAY"):
            type_name = (row["udt_name"] or data_type).lower()
        else:
            type_name = normalize_type_name(data_type)

        column_type = lookup_type(type_name)
        length = precision = scale = None
        if column_type is not None and column_type.has_length:
            length = row["character_maximum_length"]
        elif column_type == ColumnType.NUMERIC:
            precision = row["numeric_precision"]
            scale = row["numeric_scale"] if precision is not None else None

        is_identity = row["is_identity"] == "YES"
        return ColumnDefinition(
            name=name,
            type=type_name,
            nullable=row["is_nullable"] == "YES",
            default=None if is_identity else row["column_default"],
            length=length,
            precision=precision,
            scale=scale,
            autoincrement=is_identity,
        )

    @staticmethod
    def _foreign_key_from_row(schema: str, row: Any) -> ForeignKeyDefinition:
        name = row["constraint_name"]
        try:
            on_delete = FOREIGN_KEY_ACTION_CODES[row["on_delete"]]
            on_update = FOREIGN_KEY_ACTION_CODES[row["on_update"]]
        except KeyError as e:
            raise IntrospectionError(
                f"Foreign key '{name}' has unsupported action code {e}"
            ) from e

        referenced_columns = tuple(row["referenced_columns"] or ())
        if not row["referenced_table"] or len(referenced_columns) != row["key_count"]:
            raise IntrospectionError(
                f"Foreign key '{name}' on '{row['table_name']}' has an unresolved reference"
            )
        if row["referenced_schema"] != schema:
            logger.warning(
                f"Foreign key '{name}' references table "
                f"'{row['referenced_schema']}.{row['referenced_table']}' outside schema "
                f"'{schema}'"
            )

        return ForeignKeyDefinition(
            name=name,
            columns=tuple(row["columns"]),
            referenced_table=row["referenced_table"],
            referenced_columns=referenced_columns,
            on_delete=on_delete,
            on_update=on_update,
        )
