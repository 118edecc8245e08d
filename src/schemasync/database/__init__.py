"""
Database integration package for schemasync.

This package provides:
- Scoped single-connection sessions
- Schema introspection into snapshots
"""

from .connection import ConnectionConfig, DatabaseSession
from .introspection import SchemaIntrospector

__all__ = [
    "ConnectionConfig",
    "DatabaseSession",
    "SchemaIntrospector",
]
