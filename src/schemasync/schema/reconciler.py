"""
Schema reconciliation core logic for schemasync.

Coordinates the catalog, introspector, differ, reaper, planner and executor
so the tables of one package end up matching their declared definitions.
A run has two passes: obsolete tables inside the namespace prefix are
reaped first, then missing tables are created and changed tables altered.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, TYPE_CHECKING

import asyncpg

from ..database.connection import DatabaseSession
from ..database.introspection import SchemaIntrospector
from ..exceptions import ReconciliationError
from .catalog import EntityCatalog
from .differ import SchemaDiffer
from .executor import MigrationExecutor, MigrationReport, OperationMode
from .models import SchemaDelta, SchemaSnapshot
from .planner import MigrationPlanner, MigrationStatement
from .reaper import ObsoleteTableReaper

if TYPE_CHECKING:
    from ..config import SchemaSyncConfig


logger = logging.getLogger(__name__)


class ReconciliationAction(str, Enum):
    """What a reconciliation run does to the package's tables."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    REAP = "reap"
    UNINSTALL = "uninstall"
    PREVIEW = "preview"


class ReconciliationStatus(str, Enum):
    """Status of reconciliation operations."""

    SUCCESS = "success"        # Statements were executed
    UNCHANGED = "unchanged"    # Database already matched the catalog
    PLANNED = "planned"        # Statements were planned but not executed


@dataclass
class ReconciliationResult:
    """Result of a schema reconciliation run."""

    action: ReconciliationAction
    schema: str
    status: ReconciliationStatus = ReconciliationStatus.UNCHANGED
    reap_plan: List[MigrationStatement] = field(default_factory=list)
    migration_plan: List[MigrationStatement] = field(default_factory=list)
    reap_report: Optional[MigrationReport] = None
    migration_report: Optional[MigrationReport] = None
    execution_time_ms: float = 0.0

    @property
    def statements(self) -> List[MigrationStatement]:
        """Every planned statement, reap pass first."""
        return self.reap_plan + self.migration_plan

    @property
    def applied_statements(self) -> List[MigrationStatement]:
        applied: List[MigrationStatement] = []
        for report in (self.reap_report, self.migration_report):
            if report is not None:
                applied.extend(report.applied)
        return applied

    @property
    def has_changes(self) -> bool:
        return bool(self.reap_plan or self.migration_plan)

    def summary(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "status": self.status.value,
            "schema": self.schema,
            "reap_statements": len(self.reap_plan),
            "migration_statements": len(self.migration_plan),
            "applied": len(self.applied_statements),
            "execution_time_ms": round(self.execution_time_ms, 2),
        }


class SchemaReconciler:
    """
    Core schema reconciliation engine for schemasync.

    One instance serves one catalog. Runs are sequential: starting a run
    while another is in progress raises ReconciliationError. The caller
    owns the connection.
    """

    def __init__(
        self,
        catalog: EntityCatalog,
        schema: str = "public",
        mode: OperationMode = OperationMode.APPLY,
        reap_obsolete: bool = True,
    ):
        self.catalog = catalog
        self.schema = schema
        self.mode = mode
        self.reap_obsolete = reap_obsolete

        self.introspector = SchemaIntrospector(schema)
        self.differ = SchemaDiffer()
        self.reaper = ObsoleteTableReaper()
        self.planner = MigrationPlanner(schema)
        self.executor = MigrationExecutor(mode)

        self._active_action: Optional[ReconciliationAction] = None

    @property
    def is_running(self) -> bool:
        return self._active_action is not None

    @contextmanager
    def _exclusive(self, action: ReconciliationAction) -> Iterator[None]:
        if self._active_action is not None:
            raise ReconciliationError(
                f"Cannot start {action.value}: {self._active_action.value} already in progress",
                details={"schema": self.schema},
            )
        self._active_action = action
        try:
            yield
        finally:
            self._active_action = None

    async def run(
        self, action: ReconciliationAction, connection: asyncpg.Connection
    ) -> ReconciliationResult:
        """Dispatch one action."""
        handlers = {
            ReconciliationAction.INSTALL: self.install,
            ReconciliationAction.UPGRADE: self.upgrade,
            ReconciliationAction.REAP: self.reap,
            ReconciliationAction.UNINSTALL: self.uninstall,
            ReconciliationAction.PREVIEW: self.preview,
        }
        return await handlers[ReconciliationAction(action)](connection)

    async def install(self, connection: asyncpg.Connection) -> ReconciliationResult:
        """
        Bring the database up to the catalog: reap, then create and alter.

        Raises:
            CatalogError: before any database access, if the catalog is invalid
            DatabaseConnectionError: if the connection fails
            IntrospectionError: if the live schema cannot be read
            MigrationError: if a statement fails; earlier ones stay applied
        """
        return await self._reconcile(ReconciliationAction.INSTALL, connection)

    async def upgrade(self, connection: asyncpg.Connection) -> ReconciliationResult:
        """Same passes as install, reported as an upgrade."""
        return await self._reconcile(ReconciliationAction.UPGRADE, connection)

    async def reap(self, connection: asyncpg.Connection) -> ReconciliationResult:
        """Drop obsolete tables inside the namespace prefix and nothing else."""
        action = ReconciliationAction.REAP
        with self._exclusive(action):
            start_time = time.time()
            desired = self.catalog.list_desired_tables()
            result = ReconciliationResult(action=action, schema=self.schema)

            actual = await self.introspector.capture_snapshot(connection)
            await self._reap_pass(result, _desired_names(desired), actual, connection)
            return self._finish(result, start_time)

    async def uninstall(self, connection: asyncpg.Connection) -> ReconciliationResult:
        """Drop every catalog table that exists, referencing tables first."""
        action = ReconciliationAction.UNINSTALL
        with self._exclusive(action):
            start_time = time.time()
            desired = self.catalog.list_desired_tables()
            result = ReconciliationResult(action=action, schema=self.schema)

            actual = await self.introspector.capture_snapshot(connection)
            present = tuple(table.name for table in desired if table.name in actual)
            delta = SchemaDelta(dropped_tables=present)
            result.migration_plan = self.planner.plan(delta, actual)
            if result.migration_plan:
                logger.info(f"Uninstalling {len(present)} tables from schema '{self.schema}'")
                result.migration_report = await self.executor.apply(
                    result.migration_plan, connection
                )
            return self._finish(result, start_time)

    async def preview(self, connection: asyncpg.Connection) -> ReconciliationResult:
        """Plan both passes against one snapshot without executing anything."""
        action = ReconciliationAction.PREVIEW
        with self._exclusive(action):
            start_time = time.time()
            desired = self.catalog.list_desired_tables()
            result = ReconciliationResult(action=action, schema=self.schema)

            actual = await self.introspector.capture_snapshot(connection)
            if self.reap_obsolete:
                result.reap_plan = self.planner.plan(self._reap_delta(desired, actual), actual)
            result.migration_plan = self.planner.plan(self.differ.diff(desired, actual), actual)

            result.status = (
                ReconciliationStatus.PLANNED if result.has_changes
                else ReconciliationStatus.UNCHANGED
            )
            result.execution_time_ms = (time.time() - start_time) * 1000
            return result

    async def _reconcile(
        self, action: ReconciliationAction, connection: asyncpg.Connection
    ) -> ReconciliationResult:
        with self._exclusive(action):
            start_time = time.time()
            desired = self.catalog.list_desired_tables()
            result = ReconciliationResult(action=action, schema=self.schema)
            logger.info(
                f"Starting {action.value} of {len(desired)} tables in schema '{self.schema}'"
            )

            actual = await self.introspector.capture_snapshot(connection)
            if self.reap_obsolete:
                reaped = await self._reap_pass(
                    result, _desired_names(desired), actual, connection
                )
                if reaped:
                    actual = await self.introspector.capture_snapshot(connection)

            delta = self.differ.diff(desired, actual)
            result.migration_plan = self.planner.plan(delta, actual)
            if result.migration_plan:
                result.migration_report = await self.executor.apply(
                    result.migration_plan, connection
                )
            else:
                logger.info(f"Schema '{self.schema}' already matches the catalog")

            return self._finish(result, start_time)

    def _reap_delta(self, desired, actual: SchemaSnapshot) -> SchemaDelta:
        return self.reaper.build_delta(
            actual, _desired_names(desired), self.catalog.namespace_prefix
        )

    async def _reap_pass(
        self,
        result: ReconciliationResult,
        known_names,
        actual: SchemaSnapshot,
        connection: asyncpg.Connection,
    ) -> bool:
        """Plan and run the reap pass; True if it changed the database."""
        delta = self.reaper.build_delta(actual, known_names, self.catalog.namespace_prefix)
        result.reap_plan = self.planner.plan(delta, actual)
        if not result.reap_plan:
            return False

        result.reap_report = await self.executor.apply(result.reap_plan, connection)
        return bool(result.reap_report.applied)

    def _finish(
        self, result: ReconciliationResult, start_time: float
    ) -> ReconciliationResult:
        if result.applied_statements:
            result.status = ReconciliationStatus.SUCCESS
        elif result.has_changes:
            result.status = ReconciliationStatus.PLANNED
        else:
            result.status = ReconciliationStatus.UNCHANGED
        result.execution_time_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Reconciliation {result.action.value} completed for schema '{self.schema}': "
            f"{result.status.value} ({result.execution_time_ms:.1f}ms)"
        )
        return result


def _desired_names(desired) -> frozenset:
    return frozenset(table.name for table in desired)


async def run_reconciliation(
    config: "SchemaSyncConfig",
    action: ReconciliationAction = ReconciliationAction.INSTALL,
) -> ReconciliationResult:
    """
    Load the configured catalog, open one connection and run ``action``.

    The catalog is loaded and validated before connecting, so a broken
    catalog never touches the database.
    """
    config.validate_config()
    catalog = EntityCatalog.from_yaml(config.catalog.path, config.catalog.resolve_prefix())
    catalog.list_desired_tables()

    connection_config = config.require_database()
    reconciler = SchemaReconciler(
        catalog,
        schema=connection_config.db_schema,
        mode=OperationMode(config.migration.mode),
        reap_obsolete=config.migration.reap_obsolete,
    )

    async with DatabaseSession(connection_config) as connection:
        return await reconciler.run(action, connection)
