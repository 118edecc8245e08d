"""
Schema data model for schemasync.

Desired and actual database structure share one immutable representation so
the differ can compare them directly. Snapshots and deltas are value objects:
nothing in the engine mutates them after construction.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..exceptions import IntrospectionError
from .types import normalize_default, normalize_type_name


FOREIGN_KEY_ACTIONS = ("NO ACTION", "RESTRICT", "CASCADE", "SET NULL", "SET DEFAULT")


@dataclass(frozen=True)
class ColumnDefinition:
    """A single table column."""

    name: str
    type: str
    nullable: bool = True
    default: Optional[str] = None
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    autoincrement: bool = False

    @property
    def type_name(self) -> str:
        """Canonical type name used for comparison."""
        return normalize_type_name(self.type)

    @property
    def normalized_default(self) -> Optional[str]:
        return normalize_default(self.default)

    def differences(self, other: "ColumnDefinition") -> FrozenSet[str]:
        """Names of the properties that differ between two definitions of a column."""
        changed = set()
        if (
            self.type_name != other.type_name
            or self.length != other.length
            or self.precision != other.precision
            or self.scale != other.scale
        ):
            changed.add("type")
        if self.nullable != other.nullable:
            changed.add("nullable")
        if self.normalized_default != other.normalized_default:
            changed.add("default")
        if self.autoincrement != other.autoincrement:
            changed.add("autoincrement")
        return frozenset(changed)

    def __str__(self) -> str:
        result = f"{self.name} {self.type_name}"
        if self.length is not None:
            result += f"({self.length})"
        elif self.precision is not None:
            result += f"({self.precision}, {self.scale or 0})"
        if not self.nullable:
            result += " NOT NULL"
        if self.default is not None:
            result += f" DEFAULT {self.default}"
        if self.autoincrement:
            result += " IDENTITY"
        return result


@dataclass(frozen=True)
class IndexDefinition:
    """A secondary index. Primary keys are tracked on the table, not here."""

    name: str
    columns: Tuple[str, ...]
    unique: bool = False


@dataclass(frozen=True)
class ForeignKeyDefinition:
    """A foreign-key constraint from ``columns`` to ``referenced_table``."""

    name: str
    columns: Tuple[str, ...]
    referenced_table: str
    referenced_columns: Tuple[str, ...]
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"


@dataclass(frozen=True)
class TableDefinition:
    """A table: ordered columns, primary key, indexes and foreign keys."""

    name: str
    columns: Tuple[ColumnDefinition, ...] = ()
    primary_key: Tuple[str, ...] = ()
    indexes: FrozenSet[IndexDefinition] = frozenset()
    foreign_keys: FrozenSet[ForeignKeyDefinition] = frozenset()
    primary_key_name: Optional[str] = field(default=None, compare=False)

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def column(self, name: str) -> Optional[ColumnDefinition]:
        """Get a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def has_column(self, name: str) -> bool:
        return self.column(name) is not None

    def index(self, name: str) -> Optional[IndexDefinition]:
        for index in self.indexes:
            if index.name == name:
                return index
        return None

    def foreign_key(self, name: str) -> Optional[ForeignKeyDefinition]:
        for foreign_key in self.foreign_keys:
            if foreign_key.name == name:
                return foreign_key
        return None

    @property
    def sorted_indexes(self) -> List[IndexDefinition]:
        return sorted(self.indexes, key=lambda index: index.name)

    @property
    def sorted_foreign_keys(self) -> List[ForeignKeyDefinition]:
        return sorted(self.foreign_keys, key=lambda fk: fk.name)

    @property
    def referenced_tables(self) -> FrozenSet[str]:
        """Tables this table points at through its foreign keys."""
        return frozenset(fk.referenced_table for fk in self.foreign_keys)


@dataclass(frozen=True, eq=True)
class SchemaSnapshot:
    """
    Immutable view of a schema's tables at one point in time.

    Represents either the desired state or the state introspected from the
    live database.
    """

    tables: Mapping[str, TableDefinition] = field(default_factory=dict)
    schema: str = "public"

    def __post_init__(self):
        object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))

    __hash__ = None

    @classmethod
    def from_tables(
        cls, tables: Iterable[TableDefinition], schema: str = "public"
    ) -> "SchemaSnapshot":
        """Build a snapshot, rejecting duplicate table names."""
        mapping: Dict[str, TableDefinition] = {}
        for table in tables:
            if table.name in mapping:
                raise IntrospectionError(
                    f"Duplicate table '{table.name}' in snapshot of schema '{schema}'"
                )
            mapping[table.name] = table
        return cls(tables=mapping, schema=schema)

    @classmethod
    def empty(cls, schema: str = "public") -> "SchemaSnapshot":
        return cls(tables={}, schema=schema)

    def __contains__(self, name: object) -> bool:
        return name in self.tables

    def __len__(self) -> int:
        return len(self.tables)

    def __iter__(self) -> Iterator[TableDefinition]:
        for name in sorted(self.tables):
            yield self.tables[name]

    def get(self, name: str) -> Optional[TableDefinition]:
        return self.tables.get(name)

    @property
    def table_names(self) -> FrozenSet[str]:
        return frozenset(self.tables)

    def referencing_foreign_keys(
        self, table_name: str
    ) -> List[Tuple[str, ForeignKeyDefinition]]:
        """All (owning table, foreign key) pairs that point at ``table_name``."""
        result = []
        for table in self:
            for fk in table.sorted_foreign_keys:
                if fk.referenced_table == table_name:
                    result.append((table.name, fk))
        return result


@dataclass(frozen=True)
class ColumnChange:
    """A column present on both sides whose definition differs."""

    name: str
    before: ColumnDefinition
    after: ColumnDefinition
    changed_properties: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class TableDiff:
    """Structural changes needed to turn an existing table into the desired one."""

    table: str
    added_columns: Tuple[ColumnDefinition, ...] = ()
    removed_columns: Tuple[ColumnDefinition, ...] = ()
    modified_columns: Tuple[ColumnChange, ...] = ()
    added_indexes: Tuple[IndexDefinition, ...] = ()
    removed_indexes: Tuple[IndexDefinition, ...] = ()
    added_foreign_keys: Tuple[ForeignKeyDefinition, ...] = ()
    removed_foreign_keys: Tuple[ForeignKeyDefinition, ...] = ()
    old_primary_key: Tuple[str, ...] = ()
    new_primary_key: Tuple[str, ...] = ()
    primary_key_name: Optional[str] = None

    @property
    def primary_key_changed(self) -> bool:
        return self.old_primary_key != self.new_primary_key

    @property
    def is_empty(self) -> bool:
        return not (
            self.added_columns
            or self.removed_columns
            or self.modified_columns
            or self.added_indexes
            or self.removed_indexes
            or self.added_foreign_keys
            or self.removed_foreign_keys
            or self.primary_key_changed
        )


@dataclass(frozen=True)
class SchemaDelta:
    """
    Everything one reconciliation pass has to change.

    Computed once per pass, handed to the planner and then discarded.
    """

    new_tables: Tuple[TableDefinition, ...] = ()
    changed_tables: Tuple[TableDiff, ...] = ()
    dropped_tables: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.new_tables or self.changed_tables or self.dropped_tables)

    def summary(self) -> Dict[str, int]:
        return {
            "new_tables": len(self.new_tables),
            "changed_tables": len(self.changed_tables),
            "dropped_tables": len(self.dropped_tables),
        }
