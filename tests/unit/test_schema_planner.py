"""
Tests for schemasync.schema.planner and schemasync.schema.ddl modules.
"""

import pytest

from schemasync.schema import ddl
from schemasync.schema.differ import SchemaDiffer
from schemasync.schema.models import (
    ColumnChange,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    SchemaDelta,
    SchemaSnapshot,
    TableDefinition,
    TableDiff,
)
from schemasync.schema.planner import MigrationPlanner, MigrationStatement, StatementKind
from tests.conftest import make_snapshot


ID = ColumnDefinition("id", "bigint", nullable=False, autoincrement=True)


def _table(name, *columns, fks=(), indexes=(), primary_key=("id",)):
    return TableDefinition(
        name,
        (ID,) + tuple(columns),
        primary_key=primary_key,
        indexes=frozenset(indexes),
        foreign_keys=frozenset(fks),
    )


def _fk(owner, target, column="parent_id"):
    return ForeignKeyDefinition(f"{owner}_{target}_fk", (column,), target, ("id",))


@pytest.fixture
def planner() -> MigrationPlanner:
    return MigrationPlanner()


def _kinds(statements):
    return [statement.kind for statement in statements]


class TestDdl:
    """Test SQL rendering."""

    def test_quote_identifier(self):
        assert ddl.quote_identifier("MyTable") == '"MyTable"'
        assert ddl.quote_identifier('we"ird') == '"we""ird"'

    def test_column_definition(self):
        assert ddl.column_definition_sql(ID) == '"id" bigint GENERATED BY DEFAULT AS IDENTITY NOT NULL'
        column = ColumnDefinition("price", "numeric", nullable=False, default="0", precision=10, scale=2)
        assert ddl.column_definition_sql(column) == '"price" numeric(10, 2) DEFAULT 0 NOT NULL'

    def test_create_table(self):
        table = _table("A", ColumnDefinition("name", "varchar", length=50))
        assert ddl.create_table_sql("public", table) == (
            'CREATE TABLE "public"."A" ('
            '"id" bigint GENERATED BY DEFAULT AS IDENTITY NOT NULL, '
            '"name" varchar(50), '
            'PRIMARY KEY ("id"))'
        )

    def test_foreign_key_clause(self):
        fk = ForeignKeyDefinition("c_fk", ("p_id",), "P", ("id",), on_delete="CASCADE")
        assert ddl.foreign_key_clause("app", fk) == (
            'CONSTRAINT "c_fk" FOREIGN KEY ("p_id") REFERENCES "app"."P" ("id") ON DELETE CASCADE'
        )

    def test_create_unique_index(self):
        index = IndexDefinition("A_email_key", ("email",), unique=True)
        assert ddl.create_index_sql("public", "A", index) == (
            'CREATE UNIQUE INDEX "A_email_key" ON "public"."A" ("email")'
        )

    def test_alter_column_type_and_nullability(self):
        change = ColumnChange(
            "bio",
            before=ColumnDefinition("bio", "varchar", length=100),
            after=ColumnDefinition("bio", "text", nullable=False),
            changed_properties=frozenset({"type", "nullable"}),
        )
        assert ddl.alter_column_sql("public", "A", change) == [
            'ALTER TABLE "public"."A" ALTER COLUMN "bio" TYPE text USING "bio"::text',
            'ALTER TABLE "public"."A" ALTER COLUMN "bio" SET NOT NULL',
        ]

    def test_alter_column_to_identity_drops_default_first(self):
        change = ColumnChange(
            "id",
            before=ColumnDefinition("id", "bigint", nullable=False, default="nextval('a_id_seq')"),
            after=ID,
            changed_properties=frozenset({"autoincrement", "default"}),
        )
        assert ddl.alter_column_sql("public", "A", change) == [
            'ALTER TABLE "public"."A" ALTER COLUMN "id" DROP DEFAULT',
            'ALTER TABLE "public"."A" ALTER COLUMN "id" ADD GENERATED BY DEFAULT AS IDENTITY',
        ]

    def test_drop_primary_key_default_name(self):
        assert ddl.drop_primary_key_sql("public", "A") == (
            'ALTER TABLE "public"."A" DROP CONSTRAINT "A_pkey"'
        )


class TestCreatePlans:
    """Test plans for new tables."""

    def test_single_new_table_is_one_create_table(self, planner, empty_snapshot):
        delta = SchemaDiffer().diff([_table("A")], empty_snapshot)
        statements = planner.plan(delta, empty_snapshot)

        assert len(statements) == 1
        assert statements[0].kind == StatementKind.CREATE_TABLE
        assert statements[0].sql.startswith('CREATE TABLE "public"."A"')
        assert not statements[0].is_destructive

    def test_referenced_table_created_first(self, planner):
        parent = _table("Parent")
        child = _table("Child", ColumnDefinition("parent_id", "bigint"), fks=[_fk("Child", "Parent")])
        statements = planner.plan(SchemaDelta(new_tables=(child, parent)), SchemaSnapshot.empty())

        assert [s.table for s in statements] == ["Parent", "Child"]
        assert "REFERENCES" in statements[1].sql

    def test_reference_cycle_defers_foreign_key(self, planner):
        a = _table("A", ColumnDefinition("b_id", "bigint"), fks=[_fk("A", "B", "b_id")])
        b = _table("B", ColumnDefinition("a_id", "bigint"), fks=[_fk("B", "A", "a_id")])
        statements = planner.plan(SchemaDelta(new_tables=(a, b)), SchemaSnapshot.empty())

        assert _kinds(statements) == [
            StatementKind.CREATE_TABLE,
            StatementKind.CREATE_TABLE,
            StatementKind.ADD_FOREIGN_KEY,
        ]
        assert "REFERENCES" not in statements[0].sql
        assert "REFERENCES" in statements[1].sql
        assert statements[2].table == "A"

    def test_foreign_key_to_existing_table_is_added_after_create(self, planner):
        existing = _table("Existing")
        child = _table("Child", ColumnDefinition("parent_id", "bigint"), fks=[_fk("Child", "Existing")])
        statements = planner.plan(SchemaDelta(new_tables=(child,)), make_snapshot([existing]))
        assert _kinds(statements) == [StatementKind.CREATE_TABLE, StatementKind.ADD_FOREIGN_KEY]

    def test_new_table_indexes_follow_create(self, planner):
        table = _table(
            "A",
            ColumnDefinition("email", "text"),
            indexes=[IndexDefinition("A_email_idx", ("email",))],
        )
        statements = planner.plan(SchemaDelta(new_tables=(table,)))
        assert _kinds(statements) == [StatementKind.CREATE_TABLE, StatementKind.CREATE_INDEX]


class TestAlterPlans:
    """Test plans for changed tables."""

    def test_added_column_is_one_add_column(self, planner):
        email = ColumnDefinition("email", "varchar", length=255)
        actual = make_snapshot([_table("A")])
        delta = SchemaDiffer().diff([_table("A", email)], actual)
        statements = planner.plan(delta, actual)

        assert len(statements) == 1
        assert statements[0].kind == StatementKind.ADD_COLUMN
        assert statements[0].sql == 'ALTER TABLE "public"."A" ADD COLUMN "email" varchar(255)'

    def test_shrink_before_grow(self, planner):
        diff = TableDiff(
            table="A",
            added_columns=(ColumnDefinition("new", "text"),),
            removed_columns=(ColumnDefinition("old", "text"),),
            added_indexes=(IndexDefinition("A_new_idx", ("new",)),),
            removed_indexes=(IndexDefinition("A_old_idx", ("old",)),),
        )
        statements = planner.plan(SchemaDelta(changed_tables=(diff,)))
        assert _kinds(statements) == [
            StatementKind.DROP_INDEX,
            StatementKind.DROP_COLUMN,
            StatementKind.ADD_COLUMN,
            StatementKind.CREATE_INDEX,
        ]
        assert statements[1].is_destructive

    def test_primary_key_replaced_by_name(self, planner):
        diff = TableDiff(
            table="A",
            old_primary_key=("id",),
            new_primary_key=("id", "v"),
            primary_key_name="a_custom_pk",
        )
        statements = planner.plan(SchemaDelta(changed_tables=(diff,)))
        assert _kinds(statements) == [StatementKind.DROP_PRIMARY_KEY, StatementKind.ADD_PRIMARY_KEY]
        assert '"a_custom_pk"' in statements[0].sql

    def test_foreign_keys_dropped_first_and_added_last(self, planner):
        old = _fk("A", "P")
        new = ForeignKeyDefinition("A_P_fk", ("parent_id",), "P", ("id",), on_delete="CASCADE")
        diff = TableDiff(
            table="A",
            added_columns=(ColumnDefinition("note", "text"),),
            added_foreign_keys=(new,),
            removed_foreign_keys=(old,),
        )
        statements = planner.plan(SchemaDelta(changed_tables=(diff,)))
        assert _kinds(statements) == [
            StatementKind.DROP_FOREIGN_KEY,
            StatementKind.ADD_COLUMN,
            StatementKind.ADD_FOREIGN_KEY,
        ]

    def test_no_changes_no_statements(self, planner):
        assert planner.plan(SchemaDelta()) == []


class TestDropPlans:
    """Test plans that drop tables."""

    def test_referencing_table_dropped_first(self, planner):
        parent = _table("PrefixBParent")
        child = _table(
            "PrefixBChild",
            ColumnDefinition("parent_id", "bigint"),
            fks=[_fk("PrefixBChild", "PrefixBParent")],
        )
        actual = make_snapshot([parent, child])
        statements = planner.plan(
            SchemaDelta(dropped_tables=("PrefixBParent", "PrefixBChild")), actual
        )

        assert _kinds(statements) == [StatementKind.DROP_TABLE, StatementKind.DROP_TABLE]
        assert [s.table for s in statements] == ["PrefixBChild", "PrefixBParent"]
        assert all(s.is_destructive for s in statements)

    def test_surviving_table_loses_foreign_key_first(self, planner):
        obsolete = _table("PrefixBOld")
        survivor = _table(
            "Survivor", ColumnDefinition("parent_id", "bigint"), fks=[_fk("Survivor", "PrefixBOld")]
        )
        actual = make_snapshot([obsolete, survivor])
        statements = planner.plan(SchemaDelta(dropped_tables=("PrefixBOld",)), actual)

        assert _kinds(statements) == [StatementKind.DROP_FOREIGN_KEY, StatementKind.DROP_TABLE]
        assert statements[0].table == "Survivor"

    def test_reference_cycle_drops_constraints_first(self, planner):
        a = _table("A", ColumnDefinition("b_id", "bigint"), fks=[_fk("A", "B", "b_id")])
        b = _table("B", ColumnDefinition("a_id", "bigint"), fks=[_fk("B", "A", "a_id")])
        statements = planner.plan(SchemaDelta(dropped_tables=("A", "B")), make_snapshot([a, b]))

        assert _kinds(statements) == [
            StatementKind.DROP_FOREIGN_KEY,
            StatementKind.DROP_FOREIGN_KEY,
            StatementKind.DROP_TABLE,
            StatementKind.DROP_TABLE,
        ]

    def test_drop_without_snapshot_keeps_order(self, planner):
        statements = planner.plan(SchemaDelta(dropped_tables=("B", "A")))
        assert [s.sql for s in statements] == ['DROP TABLE "public"."B"', 'DROP TABLE "public"."A"']

    def test_schema_comes_from_snapshot(self):
        planner = MigrationPlanner(schema="ignored")
        actual = SchemaSnapshot.empty("app")
        statements = planner.plan(SchemaDelta(new_tables=(_table("A"),)), actual)
        assert statements[0].sql.startswith('CREATE TABLE "app"."A"')


class TestMigrationStatement:
    """Test MigrationStatement."""

    def test_str_is_sql(self):
        statement = MigrationStatement(StatementKind.DROP_TABLE, "A", "DROP TABLE A", "Drop table A")
        assert str(statement) == "DROP TABLE A"
        assert statement.is_destructive
