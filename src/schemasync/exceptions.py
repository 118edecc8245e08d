"""
Exception classes for schemasync.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .schema.planner import MigrationStatement


class SchemaSyncError(Exception):
    """Base exception for all schemasync errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(SchemaSyncError):
    """Raised when there's an error in configuration."""

    pass


class CatalogError(SchemaSyncError):
    """Raised when the declared entity catalog is malformed."""

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if table_name:
            details.setdefault("table", table_name)
        super().__init__(message, details)
        self.table_name = table_name


class DatabaseError(SchemaSyncError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the database transport fails. Retryable by the caller."""

    pass


class IntrospectionError(DatabaseError):
    """Raised when the live database returns malformed or unsupported metadata."""

    pass


class MigrationError(SchemaSyncError):
    """
    Raised when a DDL statement fails mid-sequence.

    Statements that ran before the failure are not rolled back; they are
    listed in ``applied`` so the caller can inspect the database first.
    """

    def __init__(
        self,
        message: str,
        statement: Optional["MigrationStatement"] = None,
        index: Optional[int] = None,
        total: Optional[int] = None,
        applied: Optional[List["MigrationStatement"]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if index is not None:
            details["index"] = index
        if total is not None:
            details["total"] = total
        if statement is not None:
            details["sql"] = statement.sql
        super().__init__(message, details, cause)
        self.statement = statement
        self.index = index
        self.total = total
        self.applied = list(applied or [])

    @property
    def position(self) -> Optional[int]:
        """One-based position of the failed statement."""
        return None if self.index is None else self.index + 1


class UnsafeMigrationError(MigrationError):
    """Raised when a destructive plan is refused before execution."""

    pass


class ReconciliationError(SchemaSyncError):
    """Raised when a reconciliation run cannot start or complete."""

    pass
