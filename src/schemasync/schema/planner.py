"""
Migration planner for schemasync.

Turns a SchemaDelta into an ordered list of DDL statements. Ordering follows
foreign-key dependencies rather than a fixed create/alter/drop sequence:
constraints that would block a change are dropped first, referenced tables
are created before the tables pointing at them, and referencing tables are
dropped before the tables they reference.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from . import ddl
from .models import (
    ForeignKeyDefinition,
    SchemaDelta,
    SchemaSnapshot,
    TableDefinition,
    TableDiff,
)


logger = logging.getLogger(__name__)


class StatementKind(str, Enum):
    """Kinds of DDL statements the planner emits."""

    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    ALTER_COLUMN = "alter_column"
    ADD_PRIMARY_KEY = "add_primary_key"
    DROP_PRIMARY_KEY = "drop_primary_key"
    CREATE_INDEX = "create_index"
    DROP_INDEX = "drop_index"
    ADD_FOREIGN_KEY = "add_foreign_key"
    DROP_FOREIGN_KEY = "drop_foreign_key"


DESTRUCTIVE_KINDS = frozenset({StatementKind.DROP_TABLE, StatementKind.DROP_COLUMN})


@dataclass(frozen=True)
class MigrationStatement:
    """A single DDL statement with enough context to report on it."""

    kind: StatementKind
    table: str
    sql: str
    description: str

    @property
    def is_destructive(self) -> bool:
        """Check if running this statement loses data."""
        return self.kind in DESTRUCTIVE_KINDS

    def __str__(self) -> str:
        return self.sql


class MigrationPlanner:
    """Plans PostgreSQL DDL for a SchemaDelta."""

    def __init__(self, schema: str = "public"):
        self.schema = schema

    def plan(
        self, delta: SchemaDelta, actual: Optional[SchemaSnapshot] = None
    ) -> List[MigrationStatement]:
        """
        Order the statements needed to apply ``delta``.

        Args:
            delta: Changes to plan
            actual: Snapshot the delta was computed against. Needed to find
                foreign keys that point at dropped tables and to order drops;
                without it drops run in the order given.

        Returns:
            Statements in execution order
        """
        schema = actual.schema if actual is not None else self.schema
        statements: List[MigrationStatement] = []

        drop_order, cyclic_fks = self._drop_order(delta.dropped_tables, actual)

        statements.extend(self._drop_foreign_keys(schema, delta, actual, cyclic_fks))

        for table_diff in delta.changed_tables:
            statements.extend(self._shrink_table(schema, table_diff))

        deferred: List[Tuple[str, ForeignKeyDefinition]] = []
        created: Set[str] = set()
        for table in self._creation_order(delta.new_tables):
            inline = []
            for fk in table.sorted_foreign_keys:
                if fk.referenced_table == table.name or fk.referenced_table in created:
                    inline.append(fk)
                else:
                    deferred.append((table.name, fk))
            statements.append(
                MigrationStatement(
                    kind=StatementKind.CREATE_TABLE,
                    table=table.name,
                    sql=ddl.create_table_sql(schema, table, inline),
                    description=f"Create table {table.name}",
                )
            )
            created.add(table.name)
            for index in table.sorted_indexes:
                statements.append(
                    MigrationStatement(
                        kind=StatementKind.CREATE_INDEX,
                        table=table.name,
                        sql=ddl.create_index_sql(schema, table.name, index),
                        description=f"Create index {index.name} on {table.name}",
                    )
                )

        for table_diff in delta.changed_tables:
            statements.extend(self._grow_table(schema, table_diff))

        for table_name, fk in deferred:
            statements.append(self._add_foreign_key(schema, table_name, fk))
        for table_diff in delta.changed_tables:
            for fk in table_diff.added_foreign_keys:
                statements.append(self._add_foreign_key(schema, table_diff.table, fk))

        for table_name in drop_order:
            statements.append(
                MigrationStatement(
                    kind=StatementKind.DROP_TABLE,
                    table=table_name,
                    sql=ddl.drop_table_sql(schema, table_name),
                    description=f"Drop table {table_name}",
                )
            )

        logger.debug(f"Planned {len(statements)} statements for delta {delta.summary()}")
        return statements

    def _creation_order(
        self, tables: Sequence[TableDefinition]
    ) -> List[TableDefinition]:
        """
        New tables with referenced tables first, otherwise in catalog order.

        Tables caught in a reference cycle keep catalog order; their
        forward references become deferred foreign keys.
        """
        names = {table.name for table in tables}
        pending = list(tables)
        ordered: List[TableDefinition] = []
        placed: Set[str] = set()

        progress = True
        while pending and progress:
            progress = False
            for table in pending:
                dependencies = (table.referenced_tables & names) - {table.name}
                if dependencies <= placed:
                    ordered.append(table)
                    placed.add(table.name)
                    pending.remove(table)
                    progress = True
                    break

        return ordered + pending

    def _drop_order(
        self, dropped: Sequence[str], actual: Optional[SchemaSnapshot]
    ) -> Tuple[List[str], List[Tuple[str, ForeignKeyDefinition]]]:
        """
        Referencing tables before referenced ones.

        Returns the order and, for tables in a reference cycle, the foreign
        keys that must be dropped before any of them can go.
        """
        if actual is None:
            return list(dropped), []

        targets = set(dropped)
        referenced_by: Dict[str, Set[str]] = {name: set() for name in dropped}
        for name in dropped:
            table = actual.get(name)
            if table is None:
                continue
            for referenced in table.referenced_tables:
                if referenced in targets and referenced != name:
                    referenced_by[referenced].add(name)

        pending = list(dropped)
        ordered: List[str] = []
        progress = True
        while pending and progress:
            progress = False
            for name in pending:
                if referenced_by[name] <= set(ordered):
                    ordered.append(name)
                    pending.remove(name)
                    progress = True
                    break

        cyclic_fks: List[Tuple[str, ForeignKeyDefinition]] = []
        remaining = set(pending)
        for name in pending:
            table = actual.get(name)
            if table is None:
                continue
            for fk in table.sorted_foreign_keys:
                if fk.referenced_table in remaining and fk.referenced_table != name:
                    cyclic_fks.append((name, fk))

        return ordered + pending, cyclic_fks

    def _drop_foreign_keys(
        self,
        schema: str,
        delta: SchemaDelta,
        actual: Optional[SchemaSnapshot],
        cyclic_fks: List[Tuple[str, ForeignKeyDefinition]],
    ) -> List[MigrationStatement]:
        to_drop: List[Tuple[str, ForeignKeyDefinition]] = []
        for table_diff in delta.changed_tables:
            for fk in table_diff.removed_foreign_keys:
                to_drop.append((table_diff.table, fk))

        if actual is not None:
            dropped = set(delta.dropped_tables)
            for name in delta.dropped_tables:
                for owner, fk in actual.referencing_foreign_keys(name):
                    if owner not in dropped:
                        to_drop.append((owner, fk))
        to_drop.extend(cyclic_fks)

        statements = []
        seen = set()
        for owner, fk in to_drop:
            if (owner, fk.name) in seen:
                continue
            seen.add((owner, fk.name))
            statements.append(
                MigrationStatement(
                    kind=StatementKind.DROP_FOREIGN_KEY,
                    table=owner,
                    sql=ddl.drop_foreign_key_sql(schema, owner, fk),
                    description=f"Drop foreign key {fk.name} on {owner}",
                )
            )
        return statements

    def _shrink_table(self, schema: str, table_diff: TableDiff) -> List[MigrationStatement]:
        table = table_diff.table
        statements = []
        for index in table_diff.removed_indexes:
            statements.append(
                MigrationStatement(
                    kind=StatementKind.DROP_INDEX,
                    table=table,
                    sql=ddl.drop_index_sql(schema, index),
                    description=f"Drop index {index.name} on {table}",
                )
            )
        if table_diff.primary_key_changed and table_diff.old_primary_key:
            statements.append(
                MigrationStatement(
                    kind=StatementKind.DROP_PRIMARY_KEY,
                    table=table,
                    sql=ddl.drop_primary_key_sql(schema, table, table_diff.primary_key_name),
                    description=f"Drop primary key on {table}",
                )
            )
        for column in table_diff.removed_columns:
            statements.append(
                MigrationStatement(
                    kind=StatementKind.DROP_COLUMN,
                    table=table,
                    sql=ddl.drop_column_sql(schema, table, column),
                    description=f"Drop column {column.name} from {table}",
                )
            )
        return statements

    def _grow_table(self, schema: str, table_diff: TableDiff) -> List[MigrationStatement]:
        table = table_diff.table
        statements = []
        for column in table_diff.added_columns:
            statements.append(
                MigrationStatement(
                    kind=StatementKind.ADD_COLUMN,
                    table=table,
                    sql=ddl.add_column_sql(schema, table, column),
                    description=f"Add column {column.name} to {table}",
                )
            )
        for change in table_diff.modified_columns:
            changed = ", ".join(sorted(change.changed_properties))
            for sql in ddl.alter_column_sql(schema, table, change):
                statements.append(
                    MigrationStatement(
                        kind=StatementKind.ALTER_COLUMN,
                        table=table,
                        sql=sql,
                        description=f"Alter column {change.name} on {table} ({changed})",
                    )
                )
        if table_diff.primary_key_changed and table_diff.new_primary_key:
            statements.append(
                MigrationStatement(
                    kind=StatementKind.ADD_PRIMARY_KEY,
                    table=table,
                    sql=ddl.add_primary_key_sql(schema, table, table_diff.new_primary_key),
                    description=f"Add primary key on {table}",
                )
            )
        for index in table_diff.added_indexes:
            statements.append(
                MigrationStatement(
                    kind=StatementKind.CREATE_INDEX,
                    table=table,
                    sql=ddl.create_index_sql(schema, table, index),
                    description=f"Create index {index.name} on {table}",
                )
            )
        return statements

    @staticmethod
    def _add_foreign_key(
        schema: str, table: str, fk: ForeignKeyDefinition
    ) -> MigrationStatement:
        return MigrationStatement(
            kind=StatementKind.ADD_FOREIGN_KEY,
            table=table,
            sql=ddl.add_foreign_key_sql(schema, table, fk),
            description=f"Add foreign key {fk.name} on {table}",
        )
