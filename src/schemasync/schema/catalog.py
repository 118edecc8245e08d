"""
Entity catalog for schemasync.

The catalog is the desired side of a reconciliation: the tables a package
owns, declared either in code through ``TableBuilder`` or in a YAML file.

Namespace prefix contract: every table a package declares must be named with
the package's namespace prefix (by default the camel-cased package handle,
``my_package`` -> ``MyPackage``). The obsolete-table reaper only ever drops
tables carrying that prefix, so a catalog table without it can be created
but will never be cleaned up once it leaves the catalog.
"""

import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import CatalogError
from .models import (
    FOREIGN_KEY_ACTIONS,
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableDefinition,
)
from .types import ColumnType, lookup_type, parse_type_spec


logger = logging.getLogger(__name__)

# PostgreSQL truncates longer identifiers (NAMEDATALEN - 1)
MAX_IDENTIFIER_BYTES = 63


def camelcase(handle: str) -> str:
    """Camel-case a package handle: ``my_package`` -> ``MyPackage``."""
    return "".join(part[:1].upper() + part[1:] for part in handle.replace("-", "_").split("_"))


def namespace_prefix_for(package_handle: str) -> str:
    """Namespace prefix owned by a package."""
    if not package_handle or not package_handle.strip():
        raise CatalogError("Package handle is required to derive a namespace prefix")
    return camelcase(package_handle.strip())


def check_identifier(kind: str, name: str, table_name: Optional[str] = None) -> None:
    """Reject names PostgreSQL would silently truncate."""
    if len(name.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
        raise CatalogError(
            f"{kind} name '{name}' exceeds {MAX_IDENTIFIER_BYTES} bytes",
            table_name,
        )


class ColumnSpec(BaseModel):
    """Column entry of a YAML catalog."""

    name: str = Field(..., description="Column name")
    type: Optional[str] = Field(None, description="Logical type, e.g. varchar(255)")
    nullable: bool = Field(True, description="Allow NULL values")
    default: Optional[Union[str, int, float, bool]] = Field(
        None, description="Default SQL expression"
    )
    autoincrement: bool = Field(False, description="Identity column")

    @field_validator("default")
    @classmethod
    def default_to_sql(cls, v):
        if isinstance(v, bool):
            return "true" if v else "false"
        if v is not None and not isinstance(v, str):
            return str(v)
        return v


class IndexSpec(BaseModel):
    """Index entry of a YAML catalog."""

    name: str = Field(..., description="Index name")
    columns: List[str] = Field(..., description="Indexed columns")
    unique: bool = Field(False, description="Unique index")


class ForeignKeySpec(BaseModel):
    """Foreign key entry of a YAML catalog."""

    name: str = Field(..., description="Constraint name")
    columns: List[str] = Field(..., description="Local columns")
    references: str = Field(..., description="Referenced table")
    referenced_columns: List[str] = Field(..., description="Referenced columns")
    on_delete: str = Field("NO ACTION", description="ON DELETE action")
    on_update: str = Field("NO ACTION", description="ON UPDATE action")


class TableSpec(BaseModel):
    """Table entry of a YAML catalog."""

    name: str = Field(..., description="Table name")
    columns: List[ColumnSpec] = Field(default_factory=list)
    primary_key: List[str] = Field(default_factory=list)
    indexes: List[IndexSpec] = Field(default_factory=list)
    foreign_keys: List[ForeignKeySpec] = Field(default_factory=list)


class CatalogSpec(BaseModel):
    """Top level of a YAML catalog file."""

    namespace_prefix: Optional[str] = None
    package_handle: Optional[str] = None
    tables: List[TableSpec] = Field(default_factory=list)


def build_column(
    name: str,
    type_spec: Optional[str],
    nullable: bool = True,
    default: Optional[str] = None,
    autoincrement: bool = False,
    table_name: Optional[str] = None,
) -> ColumnDefinition:
    """Turn a ``varchar(255)``-style type string into a ColumnDefinition."""
    if not type_spec or not str(type_spec).strip():
        raise CatalogError(f"Column '{name}' has no type", table_name)

    column_type, first, second = parse_type_spec(type_spec)
    if column_type is None:
        raise CatalogError(
            f"Column '{name}' has unsupported type '{type_spec}'", table_name
        )

    length = precision = scale = None
    if column_type.has_length:
        length = first
        # PostgreSQL stores a bare char as char(1)
        if column_type == ColumnType.CHAR and length is None:
            length = 1
    elif column_type.has_precision:
        precision = first
        scale = second if first is not None else None
        if precision is not None and scale is None:
            scale = 0
    elif first is not None:
        raise CatalogError(
            f"Column '{name}' of type '{column_type.value}' takes no modifiers",
            table_name,
        )

    return ColumnDefinition(
        name=name,
        type=column_type.value,
        nullable=nullable,
        default=default,
        length=length,
        precision=precision,
        scale=scale,
        autoincrement=autoincrement,
    )


class TableBuilder:
    """
    Fluent builder for a TableDefinition.

    Obtained from ``EntityCatalog.table()``; ``build()`` registers the table
    with the catalog that created it.
    """

    def __init__(self, name: str, catalog: Optional["EntityCatalog"] = None):
        self.name = name
        self._catalog = catalog
        self._columns: List[ColumnDefinition] = []
        self._primary_key: Tuple[str, ...] = ()
        self._indexes: List[IndexDefinition] = []
        self._foreign_keys: List[ForeignKeyDefinition] = []

    def column(
        self,
        name: str,
        type_spec: str,
        nullable: bool = True,
        default: Optional[str] = None,
        autoincrement: bool = False,
    ) -> "TableBuilder":
        if autoincrement:
            nullable = False
        self._columns.append(
            build_column(name, type_spec, nullable, default, autoincrement, self.name)
        )
        return self

    def primary_key(self, *columns: str) -> "TableBuilder":
        self._primary_key = tuple(columns)
        return self

    def index(self, name: str, *columns: str, unique: bool = False) -> "TableBuilder":
        self._indexes.append(IndexDefinition(name=name, columns=tuple(columns), unique=unique))
        return self

    def unique_index(self, name: str, *columns: str) -> "TableBuilder":
        return self.index(name, *columns, unique=True)

    def foreign_key(
        self,
        name: str,
        columns: Iterable[str],
        referenced_table: str,
        referenced_columns: Iterable[str],
        on_delete: str = "NO ACTION",
        on_update: str = "NO ACTION",
    ) -> "TableBuilder":
        self._foreign_keys.append(
            ForeignKeyDefinition(
                name=name,
                columns=tuple(columns),
                referenced_table=referenced_table,
                referenced_columns=tuple(referenced_columns),
                on_delete=on_delete.upper(),
                on_update=on_update.upper(),
            )
        )
        return self

    def to_definition(self) -> TableDefinition:
        names = [index.name for index in self._indexes]
        if len(names) != len(set(names)):
            raise CatalogError("Duplicate index name", self.name)
        names = [fk.name for fk in self._foreign_keys]
        if len(names) != len(set(names)):
            raise CatalogError("Duplicate foreign key name", self.name)
        return TableDefinition(
            name=self.name,
            columns=tuple(self._columns),
            primary_key=self._primary_key,
            indexes=frozenset(self._indexes),
            foreign_keys=frozenset(self._foreign_keys),
        )

    def build(self) -> TableDefinition:
        table = self.to_definition()
        if self._catalog is not None:
            self._catalog.add(table)
        return table


class EntityCatalog:
    """
    Ordered registry of the tables a package owns.

    Registration order is the catalog order: ``list_desired_tables()``
    returns tables in that order on every call.
    """

    def __init__(self, namespace_prefix: str = ""):
        self.namespace_prefix = namespace_prefix
        self._tables: List[TableDefinition] = []

    def __len__(self) -> int:
        return len(self._tables)

    def add(self, table: TableDefinition) -> None:
        """Register a table. Primary-key columns are made NOT NULL."""
        self._tables.append(_not_null_primary_key(table))

    def extend(self, tables: Iterable[TableDefinition]) -> None:
        for table in tables:
            self.add(table)

    def table(self, name: str) -> TableBuilder:
        """Start building a table that registers itself on ``build()``."""
        return TableBuilder(name, self)

    @classmethod
    def from_yaml(
        cls, path: Union[str, Path], namespace_prefix: Optional[str] = None
    ) -> "EntityCatalog":
        """Load a declarative catalog file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise CatalogError(f"Catalog file not found: {path}")
        except yaml.YAMLError as e:
            raise CatalogError(f"Invalid YAML in catalog file: {e}")

        return cls.from_dict(data, namespace_prefix)

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], namespace_prefix: Optional[str] = None
    ) -> "EntityCatalog":
        try:
            spec = CatalogSpec(**data)
        except ValidationError as e:
            raise CatalogError(f"Invalid catalog: {e}")

        if namespace_prefix is None:
            if spec.namespace_prefix is not None:
                namespace_prefix = spec.namespace_prefix
            elif spec.package_handle:
                namespace_prefix = namespace_prefix_for(spec.package_handle)
            else:
                namespace_prefix = ""

        catalog = cls(namespace_prefix)
        for table_spec in spec.tables:
            builder = catalog.table(table_spec.name)
            for column in table_spec.columns:
                builder.column(
                    column.name,
                    column.type,
                    nullable=column.nullable,
                    default=column.default,
                    autoincrement=column.autoincrement,
                )
            if table_spec.primary_key:
                builder.primary_key(*table_spec.primary_key)
            for index in table_spec.indexes:
                builder.index(index.name, *index.columns, unique=index.unique)
            for fk in table_spec.foreign_keys:
                builder.foreign_key(
                    fk.name,
                    fk.columns,
                    fk.references,
                    fk.referenced_columns,
                    on_delete=fk.on_delete,
                    on_update=fk.on_update,
                )
            builder.build()

        logger.debug(f"Loaded catalog with {len(catalog)} tables")
        return catalog

    def list_desired_tables(self) -> Tuple[TableDefinition, ...]:
        """
        Validated desired tables in catalog order.

        Raises:
            CatalogError: if any declared table is malformed
        """
        tables = tuple(self._tables)
        by_name: Dict[str, TableDefinition] = {}
        for table in tables:
            if table.name in by_name:
                raise CatalogError(f"Duplicate table name '{table.name}'", table.name)
            by_name[table.name] = table

        for table in tables:
            self._validate_table(table, by_name)

        return tables

    def known_table_names(self) -> FrozenSet[str]:
        return frozenset(table.name for table in self._tables)

    def _validate_table(
        self, table: TableDefinition, by_name: Dict[str, TableDefinition]
    ) -> None:
        if not table.name or not table.name.strip():
            raise CatalogError("Table without a name")
        if not table.columns:
            raise CatalogError("Table has no columns", table.name)
        check_identifier("Table", table.name, table.name)
        if table.primary_key_name:
            check_identifier("Primary key", table.primary_key_name, table.name)

        seen = set()
        for column in table.columns:
            if not column.name:
                raise CatalogError("Column without a name", table.name)
            if column.name in seen:
                raise CatalogError(f"Duplicate column '{column.name}'", table.name)
            check_identifier("Column", column.name, table.name)
            seen.add(column.name)
            self._validate_column(table.name, column)

        for name in table.primary_key:
            if name not in seen:
                raise CatalogError(f"Primary key column '{name}' is not declared", table.name)

        index_names = set()
        for index in table.sorted_indexes:
            if index.name in index_names:
                raise CatalogError(f"Duplicate index name '{index.name}'", table.name)
            check_identifier("Index", index.name, table.name)
            index_names.add(index.name)
            if not index.columns:
                raise CatalogError(f"Index '{index.name}' has no columns", table.name)
            for name in index.columns:
                if name not in seen:
                    raise CatalogError(
                        f"Index '{index.name}' uses undeclared column '{name}'", table.name
                    )

        for fk in table.sorted_foreign_keys:
            self._validate_foreign_key(table, fk, seen, by_name)

        if self.namespace_prefix and not table.name.startswith(self.namespace_prefix):
            logger.warning(
                f"Table '{table.name}' does not start with namespace prefix "
                f"'{self.namespace_prefix}' and will never be reaped"
            )

    @staticmethod
    def _validate_column(table_name: str, column: ColumnDefinition) -> None:
        if not column.type or not column.type.strip():
            raise CatalogError(f"Column '{column.name}' has no type", table_name)
        column_type = lookup_type(column.type)
        if column_type is None:
            raise CatalogError(
                f"Column '{column.name}' has unsupported type '{column.type}'", table_name
            )
        if column.autoincrement:
            if not column_type.is_integer:
                raise CatalogError(
                    f"Identity column '{column.name}' must be an integer type", table_name
                )
            if column.nullable:
                raise CatalogError(
                    f"Identity column '{column.name}' cannot be nullable", table_name
                )
            if column.default is not None:
                raise CatalogError(
                    f"Identity column '{column.name}' cannot have a default", table_name
                )
        if column.length is not None and not column_type.has_length:
            raise CatalogError(
                f"Column '{column.name}' of type '{column_type.value}' takes no length",
                table_name,
            )

    def _validate_foreign_key(
        self,
        table: TableDefinition,
        fk: ForeignKeyDefinition,
        columns: set,
        by_name: Dict[str, TableDefinition],
    ) -> None:
        check_identifier("Foreign key", fk.name, table.name)
        if not fk.columns or len(fk.columns) != len(fk.referenced_columns):
            raise CatalogError(
                f"Foreign key '{fk.name}' must map the same number of columns",
                table.name,
            )
        for name in fk.columns:
            if name not in columns:
                raise CatalogError(
                    f"Foreign key '{fk.name}' uses undeclared column '{name}'", table.name
                )
        for action in (fk.on_delete, fk.on_update):
            if action not in FOREIGN_KEY_ACTIONS:
                raise CatalogError(
                    f"Foreign key '{fk.name}' has unsupported action '{action}'", table.name
                )
        referenced = by_name.get(fk.referenced_table)
        # A prefixed table outside the catalog is reaped before the key is added
        if (
            referenced is None
            and self.namespace_prefix
            and fk.referenced_table.startswith(self.namespace_prefix)
        ):
            raise CatalogError(
                f"Foreign key '{fk.name}' references '{fk.referenced_table}', which "
                f"carries the namespace prefix but is not in the catalog",
                table.name,
            )
        if referenced is not None:
            for name in fk.referenced_columns:
                if not referenced.has_column(name):
                    raise CatalogError(
                        f"Foreign key '{fk.name}' references missing column "
                        f"'{fk.referenced_table}.{name}'",
                        table.name,
                    )


def _not_null_primary_key(table: TableDefinition) -> TableDefinition:
    if not table.primary_key:
        return table
    columns = tuple(
        ColumnDefinition(
            name=column.name,
            type=column.type,
            nullable=False,
            default=column.default,
            length=column.length,
            precision=column.precision,
            scale=column.scale,
            autoincrement=column.autoincrement,
        )
        if column.name in table.primary_key
        else column
        for column in table.columns
    )
    return TableDefinition(
        name=table.name,
        columns=columns,
        primary_key=table.primary_key,
        indexes=table.indexes,
        foreign_keys=table.foreign_keys,
        primary_key_name=table.primary_key_name,
    )
