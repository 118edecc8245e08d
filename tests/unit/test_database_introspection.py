"""
Tests for schemasync.database.introspection module.

Metadata rows are produced by ``tests.conftest.introspection_rows`` in the
shape PostgreSQL returns them, so the snapshots built here are compared
against catalog definitions directly.
"""

from unittest.mock import AsyncMock

import asyncpg
import pytest

from schemasync.database.introspection import (
    COLUMNS_QUERY,
    CONSTRAINTS_QUERY,
    INDEXES_QUERY,
    TABLES_QUERY,
    SchemaIntrospector,
)
from schemasync.exceptions import DatabaseConnectionError, IntrospectionError
from schemasync.schema.differ import SchemaDiffer
from tests.conftest import introspection_rows, make_connection


def _column_row(**overrides):
    row = {
        "table_name": "T",
        "column_name": "c",
        "data_type": "text",
        "udt_name": "text",
        "is_nullable": "YES",
        "column_default": None,
        "character_maximum_length": None,
        "numeric_precision": None,
        "numeric_scale": None,
        "is_identity": "NO",
        "ordinal_position": 1,
    }
    row.update(overrides)
    return row


@pytest.fixture
def introspector() -> SchemaIntrospector:
    return SchemaIntrospector()


class TestCaptureSnapshot:
    """Test reading a snapshot through a connection."""

    @pytest.mark.asyncio
    async def test_reads_catalog_tables_back(self, introspector, desired_tables):
        connection = make_connection(introspection_rows(desired_tables))
        snapshot = await introspector.capture_snapshot(connection)

        assert snapshot.schema == "public"
        assert snapshot.table_names == {"PrefixBAuthors", "PrefixBPosts"}
        assert SchemaDiffer().diff(desired_tables, snapshot).is_empty

    @pytest.mark.asyncio
    async def test_catalog_round_trip_has_no_changes(self, introspector, catalog):
        (
            catalog.table("PrefixBInvoices")
            .column("id", "integer", autoincrement=True)
            .column("code", "char", nullable=False, default="'x'")
            .column("amount", "numeric(10, 2)", nullable=False, default="0")
            .column("balance", "numeric(12)", default="-1")
            .column("paid", "boolean", default="FALSE")
            .column("created_at", "timestamptz", nullable=False, default="now()")
            .column("payload", "jsonb")
            .primary_key("id")
            .unique_index("PrefixBInvoices_code_key", "code")
            .build()
        )
        desired = catalog.list_desired_tables()
        rows = introspection_rows(desired)
        for row in rows[1]:
            if row["column_name"] == "balance":
                row["column_default"] = "'-1'::numeric"
            elif row["column_name"] == "paid":
                row["column_default"] = "false"

        snapshot = await introspector.capture_snapshot(make_connection(rows))

        invoices = snapshot.get("PrefixBInvoices")
        assert invoices.column("code").length == 1
        assert (invoices.column("amount").precision, invoices.column("amount").scale) == (10, 2)
        assert invoices.column("balance").scale == 0
        assert invoices.column("id").autoincrement
        assert snapshot.get("PrefixBPosts").foreign_key("PrefixBPosts_author_fk").on_delete == "CASCADE"
        assert snapshot.get("PrefixBPosts").column("status").default == "'draft'::character varying"
        assert SchemaDiffer().diff(desired, snapshot).is_empty

    @pytest.mark.asyncio
    async def test_queries_run_in_one_read_only_transaction(self, introspector):
        connection = make_connection([[], [], [], []])
        await introspector.capture_snapshot(connection, schema="app")

        connection.transaction.assert_called_once_with(
            isolation="repeatable_read", readonly=True
        )
        queries = [args.args for args in connection.fetch.await_args_list]
        assert queries == [
            (TABLES_QUERY, "app"),
            (COLUMNS_QUERY, "app"),
            (CONSTRAINTS_QUERY, "app"),
            (INDEXES_QUERY, "app"),
        ]

    @pytest.mark.asyncio
    async def test_empty_schema(self, introspector):
        snapshot = await introspector.capture_snapshot(make_connection([[], [], [], []]))
        assert len(snapshot) == 0

    @pytest.mark.asyncio
    async def test_connection_failure(self, introspector):
        connection = make_connection()
        connection.fetch = AsyncMock(
            side_effect=asyncpg.exceptions.ConnectionDoesNotExistError("connection was closed")
        )
        with pytest.raises(DatabaseConnectionError, match="Connection failed during introspection"):
            await introspector.capture_snapshot(connection)

    @pytest.mark.asyncio
    async def test_server_error(self, introspector):
        connection = make_connection()
        connection.fetch = AsyncMock(
            side_effect=asyncpg.exceptions.InsufficientPrivilegeError("permission denied")
        )
        with pytest.raises(IntrospectionError, match="Failed to read schema metadata"):
            await introspector.capture_snapshot(connection)

    @pytest.mark.asyncio
    async def test_malformed_rows(self, introspector):
        connection = make_connection([[{"table_name": "T"}], [{"table_name": "T"}], [], []])
        with pytest.raises(IntrospectionError, match="Malformed metadata"):
            await introspector.capture_snapshot(connection)


class TestBuildSnapshot:
    """Test assembling snapshots from metadata rows."""

    def test_column_types_are_canonical(self, introspector):
        columns = [
            _column_row(column_name="a", data_type="character varying", character_maximum_length=40),
            _column_row(column_name="b", data_type="numeric", numeric_precision=10, numeric_scale=2),
            _column_row(column_name="c", data_type="timestamp with time zone"),
            _column_row(column_name="d", data_type="integer", numeric_precision=32, numeric_scale=0),
        ]
        snapshot = introspector.build_snapshot("public", [{"table_name": "T"}], columns, [], [])
        table = snapshot.get("T")

        assert table.column("a").type == "varchar"
        assert table.column("a").length == 40
        assert (table.column("b").precision, table.column("b").scale) == (10, 2)
        assert table.column("c").type == "timestamptz"
        assert table.column("d").precision is None

    def test_user_defined_types_use_udt_name(self, introspector):
        columns = [_column_row(data_type="USER-DEFINED", udt_name="mood")]
        snapshot = introspector.build_snapshot("public", [{"table_name": "T"}], columns, [], [])
        assert snapshot.get("T").column("c").type == "mood"

    def test_identity_column(self, introspector):
        columns = [_column_row(data_type="bigint", is_nullable="NO", is_identity="YES")]
        column = introspector.build_snapshot(
            "public", [{"table_name": "T"}], columns, [], []
        ).get("T").column("c")
        assert column.autoincrement
        assert column.default is None
        assert not column.nullable

    def test_partial_indexes_are_skipped(self, introspector):
        indexes = [
            {
                "table_name": "T",
                "index_name": "T_partial_idx",
                "is_unique": False,
                "is_partial_or_expression": True,
                "columns": [],
            }
        ]
        snapshot = introspector.build_snapshot(
            "public", [{"table_name": "T"}], [_column_row()], [], indexes
        )
        assert snapshot.get("T").indexes == frozenset()

    def test_primary_key_name_is_kept(self, introspector):
        constraints = [
            {
                "table_name": "T",
                "constraint_name": "t_custom_pk",
                "constraint_type": "p",
                "key_count": 1,
                "columns": ["c"],
                "referenced_table": None,
                "referenced_schema": None,
                "referenced_columns": [],
                "on_delete": " ",
                "on_update": " ",
            }
        ]
        table = introspector.build_snapshot(
            "public", [{"table_name": "T"}], [_column_row()], constraints, []
        ).get("T")
        assert table.primary_key == ("c",)
        assert table.primary_key_name == "t_custom_pk"

    def test_unresolved_constraint_columns(self, introspector):
        constraints = [
            {
                "table_name": "T",
                "constraint_name": "t_pkey",
                "constraint_type": "p",
                "key_count": 2,
                "columns": ["c"],
                "referenced_table": None,
                "referenced_schema": None,
                "referenced_columns": [],
                "on_delete": " ",
                "on_update": " ",
            }
        ]
        with pytest.raises(IntrospectionError, match="unresolved columns"):
            introspector.build_snapshot(
                "public", [{"table_name": "T"}], [_column_row()], constraints, []
            )

    def test_unknown_foreign_key_action(self, introspector, desired_tables):
        tables, columns, constraints, indexes = introspection_rows(desired_tables)
        for row in constraints:
            if row["constraint_type"] == "f":
                row["on_delete"] = "x"
        with pytest.raises(IntrospectionError, match="unsupported action code"):
            introspector.build_snapshot("public", tables, columns, constraints, indexes)

    def test_table_without_name(self, introspector):
        with pytest.raises(IntrospectionError, match="Table without a name"):
            introspector.build_snapshot("public", [{"table_name": ""}], [], [], [])

    def test_rows_for_unlisted_tables_are_ignored(self, introspector):
        snapshot = introspector.build_snapshot(
            "public", [{"table_name": "T"}], [_column_row(), _column_row(table_name="view")], [], []
        )
        assert snapshot.table_names == {"T"}
