"""
Command-line interface for schemasync.
"""

import asyncio
import sys
from functools import wraps
from pathlib import Path
from typing import List, Optional

import click
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import CatalogConfig, SchemaSyncConfig
from .database.connection import ConnectionConfig
from .exceptions import MigrationError, SchemaSyncError
from .logging_utils import configure_logging
from .schema.catalog import EntityCatalog
from .schema.planner import MigrationStatement
from .schema.reconciler import (
    ReconciliationAction,
    ReconciliationResult,
    ReconciliationStatus,
    run_reconciliation,
)


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except MigrationError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            if e.applied:
                console.print(
                    f"[yellow]{len(e.applied)} statements were applied before the "
                    f"failure and were not rolled back:[/yellow]"
                )
                for statement in e.applied:
                    console.print(f"  {escape(statement.sql)}")
            sys.exit(1)
        except SchemaSyncError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
    return wrapper


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """schemasync: declarative PostgreSQL schema reconciliation."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="schemasync.yaml",
    help="Output configuration file path",
)
@click.option(
    "--catalog-output",
    type=click.Path(),
    default="catalog.yaml",
    help="Example catalog file path",
)
@click.option(
    "--package-handle",
    default="my_package",
    help="Package handle used for the namespace prefix",
)
@handle_errors
def init(output: str, catalog_output: str, package_handle: str):
    """Initialize a new schemasync configuration and example catalog."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config(catalog_output, package_handle)
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")

    if not Path(catalog_output).exists():
        _write_example_catalog(catalog_output, package_handle)
        console.print(f"[green]✓[/green] Example catalog created: {catalog_output}")

    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your database details")
    console.print("2. Declare your tables in the catalog file")
    console.print(f"3. Run: schemasync validate-catalog --config {output}")
    console.print(f"4. Run: schemasync plan --config {output}")
    console.print(f"5. Run: schemasync install --config {output}")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--catalog",
    type=click.Path(exists=True),
    help="Catalog file path (overrides the configured one)",
)
@click.option(
    "--prefix",
    help="Namespace prefix (overrides the configured one)",
)
@handle_errors
def validate_catalog(config: Optional[str], catalog: Optional[str], prefix: Optional[str]):
    """Validate an entity catalog without touching the database."""
    catalog_config = CatalogConfig()
    if config:
        catalog_config = SchemaSyncConfig.from_yaml(config).catalog
    path = catalog or catalog_config.path
    if not path:
        raise click.UsageError("Pass --catalog or a configuration with catalog.path")

    console.print(f"Validating catalog: {path}")
    entity_catalog = EntityCatalog.from_yaml(
        path, prefix if prefix is not None else catalog_config.resolve_prefix()
    )
    tables = entity_catalog.list_desired_tables()

    console.print(f"[green]✓[/green] Catalog is valid ({len(tables)} tables)")
    _display_catalog_summary(entity_catalog)


@main.command()
@config_option
@click.pass_context
@handle_errors
def plan(ctx, config: str):
    """Show the statements an install would run, without running them."""
    schemasync_config = _load_config(ctx, config)
    result = _run_action(schemasync_config, ReconciliationAction.PREVIEW)
    _display_result(result)


@main.command()
@config_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.option(
    "--safe",
    is_flag=True,
    help="Refuse to drop tables or columns",
)
@click.pass_context
@handle_errors
def install(ctx, config: str, dry_run: bool, safe: bool):
    """Create and alter the catalog tables, reaping obsolete ones first."""
    schemasync_config = _load_config(ctx, config, dry_run=dry_run, safe=safe)
    result = _run_action(schemasync_config, ReconciliationAction.INSTALL)
    _display_result(result)


@main.command()
@config_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.option(
    "--safe",
    is_flag=True,
    help="Refuse to drop tables or columns",
)
@click.pass_context
@handle_errors
def upgrade(ctx, config: str, dry_run: bool, safe: bool):
    """Bring an installed package's tables up to the catalog."""
    schemasync_config = _load_config(ctx, config, dry_run=dry_run, safe=safe)
    result = _run_action(schemasync_config, ReconciliationAction.UPGRADE)
    _display_result(result)


@main.command()
@config_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.pass_context
@handle_errors
def reap(ctx, config: str, dry_run: bool):
    """Drop tables inside the namespace prefix that the catalog no longer declares."""
    schemasync_config = _load_config(ctx, config, dry_run=dry_run)
    result = _run_action(schemasync_config, ReconciliationAction.REAP)
    _display_result(result)


@main.command()
@config_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without making changes",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Do not ask for confirmation",
)
@click.pass_context
@handle_errors
def uninstall(ctx, config: str, dry_run: bool, yes: bool):
    """Drop every catalog table from the database."""
    if not dry_run and not yes:
        if not click.confirm("This drops every catalog table and its data. Continue?"):
            return

    schemasync_config = _load_config(ctx, config, dry_run=dry_run)
    result = _run_action(schemasync_config, ReconciliationAction.UNINSTALL)
    _display_result(result)


def _load_config(
    ctx: click.Context, path: str, dry_run: bool = False, safe: bool = False
) -> SchemaSyncConfig:
    """Load configuration, apply command-line overrides and set up logging."""
    config = SchemaSyncConfig.from_yaml(path)
    if dry_run:
        config.migration.mode = "dry_run"
    elif safe:
        config.migration.mode = "safe"

    debug = bool(ctx.obj and ctx.obj.get("debug")) or config.debug
    configure_logging(config.logging, debug=debug)
    return config


def _run_action(
    config: SchemaSyncConfig, action: ReconciliationAction
) -> ReconciliationResult:
    return asyncio.run(run_reconciliation(config, action))


def _create_default_config(catalog_path: str, package_handle: str) -> SchemaSyncConfig:
    """Create a default configuration with environment placeholders."""
    return SchemaSyncConfig(
        database=ConnectionConfig(
            host="${POSTGRES_HOST}",
            port=5432,
            database="${POSTGRES_DB}",
            user="${POSTGRES_USER}",
            password="${POSTGRES_PASSWORD}",
        ),
        catalog=CatalogConfig(path=catalog_path, package_handle=package_handle),
    )


def _write_example_catalog(path: str, package_handle: str) -> None:
    prefix = CatalogConfig(package_handle=package_handle).resolve_prefix()
    data = {
        "package_handle": package_handle,
        "tables": [
            {
                "name": f"{prefix}Users",
                "columns": [
                    {"name": "id", "type": "bigint", "autoincrement": True},
                    {"name": "name", "type": "varchar(255)", "nullable": False},
                    {"name": "email", "type": "varchar(255)"},
                    {
                        "name": "created_at",
                        "type": "timestamptz",
                        "nullable": False,
                        "default": "now()",
                    },
                ],
                "primary_key": ["id"],
                "indexes": [
                    {"name": f"{prefix}Users_email_key", "columns": ["email"], "unique": True},
                ],
            },
        ],
    }
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, indent=2, sort_keys=False)


def _display_catalog_summary(catalog: EntityCatalog):
    """Display a summary of the catalog."""
    table = Table(title=f"Catalog tables (prefix: {catalog.namespace_prefix or '-'})")
    table.add_column("Table", style="cyan")
    table.add_column("Columns", style="magenta")
    table.add_column("Primary Key", style="green")
    table.add_column("Indexes", style="yellow")
    table.add_column("Foreign Keys", style="yellow")

    for definition in catalog.list_desired_tables():
        table.add_row(
            definition.name,
            str(len(definition.columns)),
            ", ".join(definition.primary_key) or "-",
            str(len(definition.indexes)),
            str(len(definition.foreign_keys)),
        )

    console.print(table)


def _display_statements(title: str, statements: List[MigrationStatement]):
    table = Table(title=title)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Kind", style="magenta")
    table.add_column("Table", style="green")
    table.add_column("SQL")

    for position, statement in enumerate(statements, start=1):
        kind = statement.kind.value
        if statement.is_destructive:
            kind = f"[red]{kind}[/red]"
        table.add_row(str(position), kind, statement.table, escape(statement.sql))

    console.print(table)


def _display_result(result: ReconciliationResult):
    """Display the plans and outcome of a reconciliation run."""
    if result.reap_plan:
        _display_statements("Obsolete tables", result.reap_plan)
    if result.migration_plan:
        _display_statements("Migration", result.migration_plan)

    summary = result.summary()
    if result.status == ReconciliationStatus.UNCHANGED:
        console.print("[green]✓[/green] Database already matches the catalog")
    elif result.status == ReconciliationStatus.PLANNED:
        console.print(
            f"[yellow]{len(result.statements)} statements planned, "
            f"nothing executed[/yellow]"
        )
    else:
        console.print(
            f"[green]✓[/green] {result.action.value} applied {summary['applied']} "
            f"statements in {summary['execution_time_ms']}ms"
        )


if __name__ == "__main__":
    main()
