"""
Pytest configuration and shared fixtures for schemasync tests.

This module provides shared fixtures and utilities for testing all schemasync
components without a live database: catalogs built in code, snapshots built
from table definitions, and mocked asyncpg connections.
"""

from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from schemasync.schema.catalog import EntityCatalog
from schemasync.schema.models import SchemaSnapshot, TableDefinition


# ============================================================================
# Catalog Fixtures
# ============================================================================

@pytest.fixture
def catalog() -> EntityCatalog:
    """Catalog for the ``prefix_b`` package with an author and a post table."""
    catalog = EntityCatalog(namespace_prefix="PrefixB")
    (
        catalog.table("PrefixBAuthors")
        .column("id", "bigint", autoincrement=True)
        .column("name", "varchar(255)", nullable=False)
        .primary_key("id")
        .build()
    )
    (
        catalog.table("PrefixBPosts")
        .column("id", "bigint", autoincrement=True)
        .column("author_id", "bigint", nullable=False)
        .column("title", "varchar(200)", nullable=False)
        .column("status", "varchar(20)", nullable=False, default="'draft'")
        .column("published_at", "timestamptz")
        .primary_key("id")
        .index("PrefixBPosts_author_idx", "author_id")
        .foreign_key(
            "PrefixBPosts_author_fk",
            ["author_id"],
            "PrefixBAuthors",
            ["id"],
            on_delete="CASCADE",
        )
        .build()
    )
    return catalog


@pytest.fixture
def desired_tables(catalog) -> List[TableDefinition]:
    return list(catalog.list_desired_tables())


@pytest.fixture
def catalog_data() -> Dict[str, Any]:
    """The same catalog as ``catalog``, in YAML-file form."""
    return {
        "package_handle": "prefix_b",
        "tables": [
            {
                "name": "PrefixBAuthors",
                "columns": [
                    {"name": "id", "type": "bigint", "autoincrement": True},
                    {"name": "name", "type": "varchar(255)", "nullable": False},
                ],
                "primary_key": ["id"],
            },
            {
                "name": "PrefixBPosts",
                "columns": [
                    {"name": "id", "type": "bigint", "autoincrement": True},
                    {"name": "author_id", "type": "bigint", "nullable": False},
                    {"name": "title", "type": "varchar(200)", "nullable": False},
                    {
                        "name": "status",
                        "type": "varchar(20)",
                        "nullable": False,
                        "default": "'draft'",
                    },
                    {"name": "published_at", "type": "timestamptz"},
                ],
                "primary_key": ["id"],
                "indexes": [
                    {"name": "PrefixBPosts_author_idx", "columns": ["author_id"]},
                ],
                "foreign_keys": [
                    {
                        "name": "PrefixBPosts_author_fk",
                        "columns": ["author_id"],
                        "references": "PrefixBAuthors",
                        "referenced_columns": ["id"],
                        "on_delete": "cascade",
                    },
                ],
            },
        ],
    }


@pytest.fixture
def catalog_file(tmp_path, catalog_data) -> str:
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(catalog_data, sort_keys=False))
    return str(path)


@pytest.fixture
def config_file(tmp_path, catalog_file) -> str:
    """schemasync configuration pointing at ``catalog_file``."""
    path = tmp_path / "schemasync.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "database": {
                    "host": "localhost",
                    "port": 5432,
                    "database": "testdb",
                    "user": "test",
                    "password": "test",
                },
                "catalog": {"path": "catalog.yaml", "package_handle": "prefix_b"},
            }
        )
    )
    return str(path)


# ============================================================================
# Snapshot Fixtures
# ============================================================================

def make_snapshot(tables: Iterable[TableDefinition], schema: str = "public") -> SchemaSnapshot:
    """Snapshot of a database holding exactly ``tables``."""
    return SchemaSnapshot.from_tables(tables, schema=schema)


@pytest.fixture
def empty_snapshot() -> SchemaSnapshot:
    return SchemaSnapshot.empty()


# ============================================================================
# Introspection Rows
# ============================================================================

_PG_DATA_TYPES = {
    "varchar": "character varying",
    "char": "character",
    "timestamp": "timestamp without time zone",
    "timestamptz": "timestamp with time zone",
    "time": "time without time zone",
}

_PG_DEFAULT_CASTS = {
    "varchar": "character varying",
    "char": "bpchar",
    "text": "text",
}


def introspection_rows(
    tables: Iterable[TableDefinition], schema: str = "public"
) -> List[List[Dict[str, Any]]]:
    """
    Rows the four metadata queries would return for a database holding
    ``tables``, formatted the way PostgreSQL reports them.
    """
    tables = sorted(tables, key=lambda table: table.name)
    table_rows, column_rows, constraint_rows, index_rows = [], [], [], []

    for table in tables:
        table_rows.append({"table_name": table.name})
        for position, column in enumerate(table.columns, start=1):
            default = column.default
            cast = _PG_DEFAULT_CASTS.get(column.type_name)
            if default is not None and default.startswith("'") and cast:
                default = f"{default}::{cast}"
            column_rows.append(
                {
                    "table_name": table.name,
                    "column_name": column.name,
                    "data_type": _PG_DATA_TYPES.get(column.type_name, column.type_name),
                    "udt_name": column.type_name,
                    "is_nullable": "YES" if column.nullable else "NO",
                    "column_default": default,
                    "character_maximum_length": column.length,
                    "numeric_precision": column.precision,
                    "numeric_scale": column.scale,
                    "is_identity": "YES" if column.autoincrement else "NO",
                    "ordinal_position": position,
                }
            )
        if table.primary_key:
            constraint_rows.append(
                {
                    "table_name": table.name,
                    "constraint_name": f"{table.name}_pkey",
                    "constraint_type": "p",
                    "key_count": len(table.primary_key),
                    "columns": list(table.primary_key),
                    "referenced_table": None,
                    "referenced_schema": None,
                    "referenced_columns": [],
                    "on_delete": " ",
                    "on_update": " ",
                }
            )
        for fk in table.sorted_foreign_keys:
            constraint_rows.append(
                {
                    "table_name": table.name,
                    "constraint_name": fk.name,
                    "constraint_type": "f",
                    "key_count": len(fk.columns),
                    "columns": list(fk.columns),
                    "referenced_table": fk.referenced_table,
                    "referenced_schema": schema,
                    "referenced_columns": list(fk.referenced_columns),
                    "on_delete": _action_code(fk.on_delete),
                    "on_update": _action_code(fk.on_update),
                }
            )
        for index in table.sorted_indexes:
            index_rows.append(
                {
                    "table_name": table.name,
                    "index_name": index.name,
                    "is_unique": index.unique,
                    "is_partial_or_expression": False,
                    "columns": list(index.columns),
                }
            )

    return [table_rows, column_rows, constraint_rows, index_rows]


def _action_code(action: str) -> str:
    return {
        "NO ACTION": "a",
        "RESTRICT": "r",
        "CASCADE": "c",
        "SET NULL": "n",
        "SET DEFAULT": "d",
    }[action]


# ============================================================================
# Connection Mocks
# ============================================================================

def make_connection(fetch_results: Optional[List[Any]] = None) -> MagicMock:
    """
    Mocked asyncpg connection.

    ``fetch`` returns the given results in order; ``transaction()`` is a
    working async context manager and ``execute`` succeeds.
    """
    connection = MagicMock()
    connection.fetch = AsyncMock(side_effect=list(fetch_results or []))
    connection.execute = AsyncMock(return_value="OK")
    connection.close = AsyncMock()
    connection.is_closed = MagicMock(return_value=False)

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__ = AsyncMock(return_value=False)
    connection.transaction = MagicMock(return_value=transaction)
    return connection


@pytest.fixture
def mock_connection() -> MagicMock:
    return make_connection()
