"""
Schema differ for schemasync.

Compares desired tables against an introspected snapshot and produces a
single SchemaDelta of new and changed tables. The differ never schedules
drops; removing tables is the obsolete-table reaper's job.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .models import (
    ColumnChange,
    SchemaDelta,
    SchemaSnapshot,
    TableDefinition,
    TableDiff,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _by_name(items: Iterable[T]) -> Dict[str, T]:
    return {item.name: item for item in items}


def _diff_named(
    desired: Iterable[T], actual: Iterable[T]
) -> Tuple[Tuple[T, ...], Tuple[T, ...]]:
    """
    Name-keyed set comparison.

    A name present on both sides with a different definition counts as one
    removal plus one addition.
    """
    wanted = _by_name(desired)
    current = _by_name(actual)

    added = [wanted[name] for name in sorted(wanted) if current.get(name) != wanted[name]]
    removed = [current[name] for name in sorted(current) if wanted.get(name) != current[name]]
    return tuple(added), tuple(removed)


class SchemaDiffer:
    """Computes structural deltas between desired and actual schemas."""

    def diff(
        self, desired: Sequence[TableDefinition], actual: SchemaSnapshot
    ) -> SchemaDelta:
        """
        Compute the delta needed to bring ``actual`` up to ``desired``.

        Args:
            desired: Desired tables in catalog order
            actual: Snapshot of the live schema

        Returns:
            SchemaDelta with new tables and table diffs, both in catalog order
        """
        new_tables: List[TableDefinition] = []
        changed_tables: List[TableDiff] = []

        for table in desired:
            existing = actual.get(table.name)
            if existing is None:
                new_tables.append(table)
                continue

            table_diff = self.diff_table(table, existing)
            if table_diff is not None:
                changed_tables.append(table_diff)

        delta = SchemaDelta(
            new_tables=tuple(new_tables),
            changed_tables=tuple(changed_tables),
        )
        logger.debug(f"Computed schema delta: {delta.summary()}")
        return delta

    def diff_table(
        self, desired: TableDefinition, actual: TableDefinition
    ) -> Optional[TableDiff]:
        """Compare two definitions of the same table; None when identical."""
        current_columns = _by_name(actual.columns)
        wanted_columns = _by_name(desired.columns)

        added_columns = tuple(
            column for column in desired.columns if column.name not in current_columns
        )
        removed_columns = tuple(
            current_columns[name] for name in sorted(current_columns)
            if name not in wanted_columns
        )

        modified_columns = []
        for name in sorted(wanted_columns):
            if name not in current_columns:
                continue
            changed = current_columns[name].differences(wanted_columns[name])
            if changed:
                modified_columns.append(
                    ColumnChange(
                        name=name,
                        before=current_columns[name],
                        after=wanted_columns[name],
                        changed_properties=changed,
                    )
                )

        added_indexes, removed_indexes = _diff_named(desired.indexes, actual.indexes)
        added_fks, removed_fks = _diff_named(desired.foreign_keys, actual.foreign_keys)

        table_diff = TableDiff(
            table=desired.name,
            added_columns=added_columns,
            removed_columns=removed_columns,
            modified_columns=tuple(modified_columns),
            added_indexes=added_indexes,
            removed_indexes=removed_indexes,
            added_foreign_keys=added_fks,
            removed_foreign_keys=removed_fks,
            old_primary_key=tuple(actual.primary_key),
            new_primary_key=tuple(desired.primary_key),
            primary_key_name=actual.primary_key_name,
        )

        if table_diff.is_empty:
            return None
        return table_diff
