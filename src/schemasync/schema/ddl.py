"""
PostgreSQL DDL rendering for schemasync.

Pure functions from schema model objects to SQL text. Every identifier is
quoted, so mixed-case table names such as ``MyPackageOrders`` survive.
"""

from typing import Iterable, List, Optional, Sequence

from .models import (
    ColumnChange,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)


def quote_identifier(name: str) -> str:
    """Quote an identifier for PostgreSQL."""
    return '"' + name.replace('"', '""') + '"'


def qualified_name(schema: str, name: str) -> str:
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def column_list(columns: Iterable[str]) -> str:
    return ", ".join(quote_identifier(column) for column in columns)


def column_type_sql(column: ColumnDefinition) -> str:
    """Type with its modifiers, e.g. ``varchar(255)`` or ``numeric(10, 2)``."""
    result = column.type_name
    if column.length is not None:
        result += f"({column.length})"
    elif column.precision is not None:
        result += f"({column.precision}, {column.scale or 0})"
    return result


def column_definition_sql(column: ColumnDefinition) -> str:
    parts = [quote_identifier(column.name), column_type_sql(column)]
    if column.autoincrement:
        parts.append("GENERATED BY DEFAULT AS IDENTITY")
    elif column.default is not None:
        parts.append(f"DEFAULT {column.default}")
    if not column.nullable:
        parts.append("NOT NULL")
    return " ".join(parts)


def foreign_key_clause(schema: str, fk: ForeignKeyDefinition) -> str:
    clause = (
        f"CONSTRAINT {quote_identifier(fk.name)} FOREIGN KEY ({column_list(fk.columns)}) "
        f"REFERENCES {qualified_name(schema, fk.referenced_table)} "
        f"({column_list(fk.referenced_columns)})"
    )
    if fk.on_delete != "NO ACTION":
        clause += f" ON DELETE {fk.on_delete}"
    if fk.on_update != "NO ACTION":
        clause += f" ON UPDATE {fk.on_update}"
    return clause


def create_table_sql(
    schema: str,
    table: TableDefinition,
    inline_foreign_keys: Sequence[ForeignKeyDefinition] = (),
) -> str:
    """CREATE TABLE with columns, primary key and the given foreign keys."""
    elements = [column_definition_sql(column) for column in table.columns]
    if table.primary_key:
        elements.append(f"PRIMARY KEY ({column_list(table.primary_key)})")
    for fk in inline_foreign_keys:
        elements.append(foreign_key_clause(schema, fk))
    body = ", ".join(elements)
    return f"CREATE TABLE {qualified_name(schema, table.name)} ({body})"


def drop_table_sql(schema: str, table: str) -> str:
    return f"DROP TABLE {qualified_name(schema, table)}"


def create_index_sql(schema: str, table: str, index: IndexDefinition) -> str:
    unique = "UNIQUE " if index.unique else ""
    return (
        f"CREATE {unique}INDEX {quote_identifier(index.name)} "
        f"ON {qualified_name(schema, table)} ({column_list(index.columns)})"
    )


def drop_index_sql(schema: str, index: IndexDefinition) -> str:
    return f"DROP INDEX {qualified_name(schema, index.name)}"


def add_column_sql(schema: str, table: str, column: ColumnDefinition) -> str:
    return (
        f"ALTER TABLE {qualified_name(schema, table)} "
        f"ADD COLUMN {column_definition_sql(column)}"
    )


def drop_column_sql(schema: str, table: str, column: ColumnDefinition) -> str:
    return (
        f"ALTER TABLE {qualified_name(schema, table)} "
        f"DROP COLUMN {quote_identifier(column.name)}"
    )


def alter_column_sql(schema: str, table: str, change: ColumnChange) -> List[str]:
    """
    One statement per changed property.

    Identity is removed before a default is set and added after the old
    default is dropped, since a column cannot carry both.
    """
    prefix = (
        f"ALTER TABLE {qualified_name(schema, table)} "
        f"ALTER COLUMN {quote_identifier(change.name)}"
    )
    before, after = change.before, change.after
    changed = change.changed_properties
    statements = []

    if "type" in changed:
        type_sql = column_type_sql(after)
        statements.append(
            f"{prefix} TYPE {type_sql} USING {quote_identifier(change.name)}::{type_sql}"
        )
    if "autoincrement" in changed and not after.autoincrement:
        statements.append(f"{prefix} DROP IDENTITY IF EXISTS")
    if "default" in changed:
        if after.default is None:
            statements.append(f"{prefix} DROP DEFAULT")
        elif not after.autoincrement:
            statements.append(f"{prefix} SET DEFAULT {after.default}")
    if "nullable" in changed:
        statements.append(f"{prefix} {'DROP' if after.nullable else 'SET'} NOT NULL")
    if "autoincrement" in changed and after.autoincrement:
        if before.default is not None and "default" not in changed:
            statements.append(f"{prefix} DROP DEFAULT")
        statements.append(f"{prefix} ADD GENERATED BY DEFAULT AS IDENTITY")
    return statements


def add_primary_key_sql(schema: str, table: str, columns: Sequence[str]) -> str:
    return (
        f"ALTER TABLE {qualified_name(schema, table)} "
        f"ADD PRIMARY KEY ({column_list(columns)})"
    )


def drop_primary_key_sql(schema: str, table: str, constraint: Optional[str] = None) -> str:
    name = constraint or f"{table}_pkey"
    return (
        f"ALTER TABLE {qualified_name(schema, table)} "
        f"DROP CONSTRAINT {quote_identifier(name)}"
    )


def add_foreign_key_sql(schema: str, table: str, fk: ForeignKeyDefinition) -> str:
    return f"ALTER TABLE {qualified_name(schema, table)} ADD {foreign_key_clause(schema, fk)}"


def drop_foreign_key_sql(schema: str, table: str, fk: ForeignKeyDefinition) -> str:
    return (
        f"ALTER TABLE {qualified_name(schema, table)} "
        f"DROP CONSTRAINT {quote_identifier(fk.name)}"
    )
