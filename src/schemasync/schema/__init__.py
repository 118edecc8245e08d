"""
Schema management package for schemasync.

This package provides:
- The entity catalog of declared tables
- Structural diffing against a live snapshot
- Obsolete table detection inside a namespace prefix
- Migration planning and statement execution

The reconciler in ``schemasync.schema.reconciler`` ties these together
with a database connection.
"""

from .catalog import EntityCatalog, TableBuilder, namespace_prefix_for
from .differ import SchemaDiffer
from .executor import MigrationExecutor, MigrationReport, OperationMode
from .models import (
    ColumnChange,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    SchemaDelta,
    SchemaSnapshot,
    TableDefinition,
    TableDiff,
)
from .planner import MigrationPlanner, MigrationStatement, StatementKind
from .reaper import ObsoleteTableReaper
from .types import ColumnType

__all__ = [
    "EntityCatalog",
    "TableBuilder",
    "namespace_prefix_for",
    "SchemaDiffer",
    "MigrationExecutor",
    "MigrationReport",
    "OperationMode",
    "ColumnChange",
    "ColumnDefinition",
    "ForeignKeyDefinition",
    "IndexDefinition",
    "SchemaDelta",
    "SchemaSnapshot",
    "TableDefinition",
    "TableDiff",
    "MigrationPlanner",
    "MigrationStatement",
    "StatementKind",
    "ObsoleteTableReaper",
    "ColumnType",
]
