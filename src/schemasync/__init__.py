"""
schemasync: declarative PostgreSQL schema reconciliation.

schemasync compares the tables a package declares in its entity catalog
with the live database and applies the DDL needed to make them match,
dropping obsolete tables inside the package's namespace prefix.
"""

__version__ = "0.1.0"

from .config import SchemaSyncConfig
from .exceptions import (
    CatalogError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    IntrospectionError,
    MigrationError,
    ReconciliationError,
    SchemaSyncError,
)
from .schema.catalog import EntityCatalog
from .schema.reconciler import (
    ReconciliationAction,
    ReconciliationResult,
    SchemaReconciler,
    run_reconciliation,
)

__all__ = [
    "__version__",
    "SchemaSyncConfig",
    "SchemaSyncError",
    "ConfigurationError",
    "CatalogError",
    "DatabaseError",
    "DatabaseConnectionError",
    "IntrospectionError",
    "MigrationError",
    "ReconciliationError",
    "EntityCatalog",
    "ReconciliationAction",
    "ReconciliationResult",
    "SchemaReconciler",
    "run_reconciliation",
]
