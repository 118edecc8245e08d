"""
Configuration system for schemasync using Pydantic.
"""

import os
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .exceptions import ConfigurationError
from .schema.catalog import namespace_prefix_for


class CatalogConfig(BaseModel):
    """Where the desired schema comes from and which tables the package owns."""

    path: Optional[str] = Field(None, description="YAML catalog file")
    namespace_prefix: Optional[str] = Field(
        None, description="Prefix of every table the package owns"
    )
    package_handle: Optional[str] = Field(
        None, description="Package handle; camel-cased into the namespace prefix"
    )

    def resolve_prefix(self) -> Optional[str]:
        """Configured prefix, falling back to the camel-cased package handle."""
        if self.namespace_prefix is not None:
            return self.namespace_prefix
        if self.package_handle:
            return namespace_prefix_for(self.package_handle)
        return None


class MigrationConfig(BaseModel):
    """Migration execution configuration."""

    mode: Literal["apply", "safe", "dry_run"] = Field(
        "apply", description="Execution mode"
    )
    reap_obsolete: bool = Field(
        True, description="Drop obsolete tables inside the namespace prefix"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class SchemaSyncConfig(BaseSettings):
    """Main schemasync configuration."""

    debug: bool = Field(False, description="Enable debug mode")

    database: Optional[ConnectionConfig] = Field(
        None, description="Database connection"
    )
    catalog: CatalogConfig = Field(
        default_factory=CatalogConfig, description="Entity catalog configuration"
    )
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description="Migration configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SCHEMASYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SchemaSyncConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            config = cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        # Relative catalog paths are relative to the configuration file
        if config.catalog.path and not os.path.isabs(config.catalog.path):
            config.catalog.path = str(Path(path).parent / config.catalog.path)
        return config

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def require_database(self) -> ConnectionConfig:
        """Database configuration, or ConfigurationError if missing."""
        if self.database is None:
            raise ConfigurationError("No database connection configured")
        return self.database

    def validate_config(self) -> None:
        """Validate the configuration for consistency."""
        self.require_database()
        if not self.catalog.path:
            raise ConfigurationError("No catalog file configured")

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True, by_alias=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )
