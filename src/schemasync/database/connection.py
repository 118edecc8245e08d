"""
Database connection management for schemasync.

A reconciliation run uses exactly one PostgreSQL connection: it is opened
once, shared by introspection and DDL execution, and closed on every exit
path.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, unquote, urlparse

import asyncpg
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import ConfigurationError, DatabaseConnectionError


logger = logging.getLogger(__name__)


TRANSPORT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.CannotConnectNowError,
)


def is_transport_error(error: BaseException) -> bool:
    """Check if an exception means the connection itself failed."""
    return isinstance(error, TRANSPORT_ERRORS)


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field("postgres", description="Database user")
    password: str = Field("", description="Database password")
    db_schema: str = Field("public", alias="schema", description="Schema to reconcile")

    connect_timeout: float = Field(30.0, description="Connection timeout in seconds")
    command_timeout: Optional[float] = Field(
        None, description="Per-statement timeout in seconds; None leaves it to the server"
    )
    server_settings: Dict[str, str] = Field(
        default_factory=lambda: {"application_name": "schemasync"},
        description="PostgreSQL server settings",
    )
    ssl_mode: Optional[str] = Field(None, description="SSL mode")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("database")
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_url(cls, url: str, schema: str = "public") -> "ConnectionConfig":
        """Create configuration from a database URL."""
        parsed = urlparse(url)

        if parsed.scheme not in ("postgresql", "postgres"):
            raise ConfigurationError(f"Invalid database URL scheme: {parsed.scheme}")

        if not parsed.path or parsed.path == "/":
            raise ConfigurationError("Database name is required")

        query_params = parse_qs(parsed.query) if parsed.query else {}

        config_data: Dict[str, Any] = {
            "host": parsed.hostname or "localhost",
            "port": parsed.port or 5432,
            "database": parsed.path.lstrip("/"),
            "user": unquote(parsed.username) if parsed.username else "postgres",
            "password": unquote(parsed.password) if parsed.password else "",
            "schema": schema,
        }
        if "sslmode" in query_params:
            config_data["ssl_mode"] = query_params["sslmode"][0]

        return cls(**config_data)

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncpg connection kwargs."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
            "server_settings": self.server_settings,
        }
        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode
        return kwargs


class DatabaseSession:
    """
    Scoped single-connection session.

    Use as an async context manager; the connection is closed when the block
    exits, whether it succeeded or raised.
    """

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._connection: Optional[asyncpg.Connection] = None

    @property
    def connection(self) -> asyncpg.Connection:
        if self._connection is None:
            raise DatabaseConnectionError("Session is not connected")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    async def connect(self) -> asyncpg.Connection:
        """Open the connection."""
        if self._connection is not None:
            return self._connection

        logger.info(
            f"Connecting to {self.config.host}:{self.config.port}/{self.config.database}"
        )
        try:
            self._connection = await asyncpg.connect(**self.config.to_connection_kwargs())
        except (asyncpg.exceptions.PostgresError, *TRANSPORT_ERRORS) as e:
            logger.error(f"Failed to connect to database: {e}")
            raise DatabaseConnectionError(f"Failed to connect to database: {e}", cause=e) from e

        return self._connection

    async def close(self) -> None:
        """Close the connection if it is open."""
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        try:
            await connection.close()
            logger.debug("Database connection closed")
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Error closing database connection: {e}")
            connection.terminate()

    async def __aenter__(self) -> asyncpg.Connection:
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
