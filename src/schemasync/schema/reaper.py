"""
Obsolete-table reaper for schemasync.

Finds tables inside a package's namespace prefix that no longer belong to
any catalog entry. Its result is planned as a delta of its own and is never
merged into the add/alter delta.
"""

import logging
from typing import AbstractSet, FrozenSet

from .models import SchemaDelta, SchemaSnapshot


logger = logging.getLogger(__name__)


class ObsoleteTableReaper:
    """Selects tables a package owns by naming convention but no longer declares."""

    def find_obsolete(
        self,
        actual: SchemaSnapshot,
        known_table_names: AbstractSet[str],
        namespace_prefix: str,
    ) -> FrozenSet[str]:
        """
        Tables in ``actual`` starting with ``namespace_prefix`` and absent from
        ``known_table_names``.

        An empty prefix selects nothing, so a missing prefix can never turn
        into dropping every table in the schema.
        """
        if not namespace_prefix:
            logger.warning("No namespace prefix configured; skipping obsolete table search")
            return frozenset()

        obsolete = frozenset(
            name
            for name in actual.table_names
            if name.startswith(namespace_prefix) and name not in known_table_names
        )

        if obsolete:
            logger.info(
                f"Found {len(obsolete)} obsolete tables with prefix "
                f"'{namespace_prefix}': {', '.join(sorted(obsolete))}"
            )
        return obsolete

    def build_delta(
        self,
        actual: SchemaSnapshot,
        known_table_names: AbstractSet[str],
        namespace_prefix: str,
    ) -> SchemaDelta:
        """Drop-only delta for the obsolete tables, in name order."""
        obsolete = self.find_obsolete(actual, known_table_names, namespace_prefix)
        return SchemaDelta(dropped_tables=tuple(sorted(obsolete)))
