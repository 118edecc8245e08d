"""
Migration executor for schemasync.

Runs planned DDL statements one at a time against a single connection.
Execution stops at the first failure; statements that already ran stay
applied and are reported, because DDL is not transactional on every engine
and the caller has to inspect the database before retrying.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence

import asyncpg

from ..exceptions import MigrationError, UnsafeMigrationError
from .planner import MigrationStatement


logger = logging.getLogger(__name__)


class OperationMode(str, Enum):
    """Migration execution modes."""

    APPLY = "apply"            # Execute every planned statement
    SAFE = "safe"              # Refuse plans that drop tables or columns
    DRY_RUN = "dry_run"        # Log the SQL but don't execute


@dataclass
class MigrationReport:
    """Outcome of applying a list of statements."""

    statements: List[MigrationStatement]
    applied: List[MigrationStatement] = field(default_factory=list)
    dry_run: bool = False
    execution_time_ms: float = 0.0

    @property
    def total(self) -> int:
        return len(self.statements)

    @property
    def is_complete(self) -> bool:
        """Check if every statement ran (or would run, in dry-run mode)."""
        return self.dry_run or len(self.applied) == len(self.statements)

    def summary(self) -> Dict[str, Any]:
        return {
            "total_statements": self.total,
            "applied": len(self.applied),
            "dry_run": self.dry_run,
            "destructive": sum(1 for s in self.statements if s.is_destructive),
            "execution_time_ms": round(self.execution_time_ms, 2),
        }


class MigrationExecutor:
    """Applies migration statements statement by statement."""

    def __init__(self, mode: OperationMode = OperationMode.APPLY):
        self.mode = mode

    async def apply(
        self,
        statements: Sequence[MigrationStatement],
        connection: asyncpg.Connection,
    ) -> MigrationReport:
        """
        Execute ``statements`` in order.

        Args:
            statements: Planned statements
            connection: Open connection, owned by the caller

        Returns:
            MigrationReport listing the applied statements

        Raises:
            UnsafeMigrationError: in SAFE mode, if any statement is destructive
            MigrationError: if a statement fails; later statements never run
        """
        statements = list(statements)
        report = MigrationReport(statements=statements)

        if self.mode == OperationMode.DRY_RUN:
            report.dry_run = True
            for statement in statements:
                logger.info(f"DRY RUN: {statement.sql}")
            return report

        if self.mode == OperationMode.SAFE:
            destructive = [s for s in statements if s.is_destructive]
            if destructive:
                first = destructive[0]
                raise UnsafeMigrationError(
                    f"Destructive statement not allowed in SAFE mode: {first.description}",
                    statement=first,
                    index=statements.index(first),
                    total=len(statements),
                )

        start_time = time.time()
        total = len(statements)
        for index, statement in enumerate(statements):
            try:
                logger.info(f"[{index + 1}/{total}] {statement.sql}")
                await connection.execute(statement.sql)
            except Exception as e:
                report.execution_time_ms = (time.time() - start_time) * 1000
                logger.error(
                    f"Statement {index + 1} of {total} failed "
                    f"({len(report.applied)} already applied): {e}"
                )
                raise MigrationError(
                    f"Migration stopped at statement {index + 1} of {total}: "
                    f"{statement.description}",
                    statement=statement,
                    index=index,
                    total=total,
                    applied=report.applied,
                    cause=e,
                ) from e
            report.applied.append(statement)

        report.execution_time_ms = (time.time() - start_time) * 1000
        if total:
            logger.info(f"Applied {total} statements in {report.execution_time_ms:.1f}ms")
        return report
