"""
Command-line interface for openphone_sync.

Provides CLI commands for pushing clients into OpenPhone, importing
OpenPhone calls and conversations, and checking the configuration.

Usage:
    # Show help
    openphone-sync --help

    # Check configuration and connectivity
    openphone-sync check

    # Create the local client database
    openphone-sync init-db

    # Run synchronization
    openphone-sync sync
    openphone-sync sync --dry-run
    openphone-sync sync --incremental --since 2024-06-01

    # Import the last day of calls and messages
    openphone-sync import-communications
"""

import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import click

from openphone_sync import __version__
from openphone_sync.api.openphone_api import OpenPhoneAPI, OpenPhoneAPIError
from openphone_sync.cli.formatters import (
    format_progress,
    show_configuration_report,
    show_sync_errors,
)
from openphone_sync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from openphone_sync.config.settings import OpenPhoneSettings, load_settings
from openphone_sync.storage.db import ClientDatabase
from openphone_sync.sync.communications import (
    CommunicationsImporter,
    CommunicationSyncOptions,
    CommunicationSyncResult,
)
from openphone_sync.sync.engine import (
    ConfigurationReport,
    ContactSyncEngine,
    SyncInProgressError,
    SyncMode,
    SyncOptions,
    SyncProgress,
    SyncResult,
)
from openphone_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from openphone_sync.utils.paths import default_database_path, resolve_config_dir

# Client types accepted by --client-type
CLIENT_TYPES = ("criminal", "civil")

# Formats accepted by --since / --until
DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file)
    return config_dir / DEFAULT_CONFIG_FILE


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Command-line dates carry no zone; they are taken as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _resolve_settings(ctx: click.Context, overrides: dict[str, Any]) -> OpenPhoneSettings:
    """Load settings for a command, exiting with an error message if invalid."""
    try:
        settings = load_settings(
            config_dir=ctx.obj["config_dir"],
            config_file=ctx.obj["config_file"],
            overrides=overrides,
        )
    except ConfigError as e:
        click.echo(click.style(f"Configuration error: {e}", fg="red"), err=True)
        sys.exit(1)
    return settings


def _require_api_key(settings: OpenPhoneSettings) -> None:
    problems = settings.validate()
    if problems:
        for problem in problems:
            click.echo(click.style(f"Error: {problem}", fg="red"), err=True)
        click.echo(
            "Set OPENPHONE_API_KEY or add api_key to the configuration file.",
            err=True,
        )
        sys.exit(1)


def _database_path(ctx: click.Context, settings: OpenPhoneSettings) -> str:
    return settings.database_path or str(default_database_path(ctx.obj["config_dir"]))


def _open_database(ctx: click.Context, settings: OpenPhoneSettings) -> ClientDatabase:
    db_path = _database_path(ctx, settings)
    if db_path != ":memory:":
        Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    database = ClientDatabase(db_path)
    database.initialize()
    return database


async def _run_sync(
    settings: OpenPhoneSettings,
    database: ClientDatabase,
    options: SyncOptions,
    on_progress: Any,
) -> SyncResult:
    async with OpenPhoneAPI(settings) as api:
        engine = ContactSyncEngine(api, database)
        engine.on_progress(on_progress)
        return await engine.sync_contacts(options)


async def _run_import(
    settings: OpenPhoneSettings,
    database: ClientDatabase,
    options: CommunicationSyncOptions,
) -> CommunicationSyncResult:
    async with OpenPhoneAPI(settings) as api:
        importer = CommunicationsImporter(api, database)
        return await importer.sync_communications(options)


async def _run_check(
    settings: OpenPhoneSettings, database: ClientDatabase
) -> ConfigurationReport:
    async with OpenPhoneAPI(settings) as api:
        engine = ContactSyncEngine(api, database)
        return await engine.test_configuration()


@click.group()
@click.version_option(version=__version__, prog_name="openphone-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="OPENPHONE_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.openphone-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="OPENPHONE_SYNC_CONFIG_FILE",
    help="Configuration file path (default: ~/.openphone-sync/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    OpenPhone client sync.

    Pushes the practice's clients into OpenPhone as contacts and imports
    OpenPhone calls and messages into the communication log.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    # Load configuration file
    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Show error but don't fail; commands that need settings report it again
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    # CLI flag takes precedence over the config file
    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = None
    if config.get("log_dir"):
        log_dir = Path(config["log_dir"])

    # Mask the configured key even when it lacks the usual sk- prefix
    secrets = (config.get("api_key") or "", os.environ.get("OPENPHONE_API_KEY", ""))
    setup_logging(
        verbose=effective_verbose,
        log_dir=log_dir,
        enable_file_logging=True,
        secrets=tuple(s for s in secrets if s),
    )

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.option(
    "--dry-run", "-n", is_flag=True, help="Preview changes without applying them."
)
@click.option(
    "--incremental",
    "-i",
    is_flag=True,
    help="Only sync clients updated since --since.",
)
@click.option(
    "--since",
    type=click.DateTime(formats=DATE_FORMATS),
    help="Cut-off for incremental sync (UTC).",
)
@click.option(
    "--batch-size",
    "-b",
    type=click.IntRange(min=1),
    help="Clients processed concurrently per batch.",
)
@click.option(
    "--client-type",
    "-t",
    type=click.Choice(CLIENT_TYPES, case_sensitive=False),
    help="Only sync clients of this type.",
)
@click.option(
    "--stop-on-error",
    is_flag=True,
    help="Abort the run at the first client that fails.",
)
@click.pass_context
def sync_command(
    ctx: click.Context,
    dry_run: bool,
    incremental: bool,
    since: datetime | None,
    batch_size: int | None,
    client_type: str | None,
    stop_on_error: bool,
) -> None:
    """
    Push clients into OpenPhone as contacts.

    Every client becomes a main contact plus up to two alternative
    contacts. Contacts that already exist in OpenPhone (matched by external
    id, phone number or name) are updated; the rest are created.

    Examples:

        # Preview changes without applying
        openphone-sync sync --dry-run

        # Only clients changed since a date
        openphone-sync sync --incremental --since 2024-06-01

        # Civil clients only, stop at the first failure
        openphone-sync sync --client-type civil --stop-on-error
    """
    logger = get_logger(__name__)
    config = ctx.obj.get("config", {})

    effective_dry_run = dry_run or config.get("dry_run", False)
    continue_on_error = not stop_on_error and config.get("continue_on_error", True)

    if incremental and since is None:
        click.echo(
            click.style(
                "Warning: --incremental without --since runs a full scan.",
                fg="yellow",
            ),
            err=True,
        )

    settings = _resolve_settings(ctx, {"batch_size": batch_size})
    _require_api_key(settings)

    options = SyncOptions(
        sync_mode=SyncMode.INCREMENTAL if incremental else SyncMode.FULL,
        batch_size=settings.batch_size,
        updated_since=_as_utc(since),
        dry_run=effective_dry_run,
        client_type=client_type.lower() if client_type else None,
        continue_on_error=continue_on_error,
    )

    def on_progress(progress: SyncProgress) -> None:
        click.echo(format_progress(progress))

    try:
        database = _open_database(ctx, settings)
        mode = "Analyzing" if effective_dry_run else "Synchronizing"
        click.echo(f"{mode} clients with OpenPhone...")

        result = asyncio.run(_run_sync(settings, database, options, on_progress))
    except SyncInProgressError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("\n" + "=" * 50)
    click.echo(result.summary())
    click.echo("=" * 50)

    if not result.success:
        show_sync_errors(result)
        click.echo(click.style("\nSync finished with errors.", fg="red"), err=True)
        sys.exit(1)

    if effective_dry_run:
        click.echo(click.style("\nDry run complete. No changes were made.", fg="yellow"))
        click.echo("Run without --dry-run to apply these changes.")
    else:
        click.echo(click.style("\nSync completed successfully!", fg="green"))


# =============================================================================
# Import Communications Command
# =============================================================================


@cli.command("import-communications")
@click.option(
    "--since",
    type=click.DateTime(formats=DATE_FORMATS),
    help="Start of the import window (UTC, default: 24 hours ago).",
)
@click.option(
    "--until",
    type=click.DateTime(formats=DATE_FORMATS),
    help="End of the import window (UTC, default: now).",
)
@click.option("--no-calls", is_flag=True, help="Skip calls.")
@click.option("--no-messages", is_flag=True, help="Skip conversations.")
@click.option(
    "--page-size",
    type=click.IntRange(min=1, max=100),
    default=100,
    show_default=True,
    help="Page size for OpenPhone list requests.",
)
@click.pass_context
def import_communications_command(
    ctx: click.Context,
    since: datetime | None,
    until: datetime | None,
    no_calls: bool,
    no_messages: bool,
    page_size: int,
) -> None:
    """
    Import OpenPhone calls and conversations into the communication log.

    Each call or conversation is stored once, keyed by its OpenPhone id;
    re-importing a window updates existing entries. Callers that match no
    client get a new client record.
    """
    logger = get_logger(__name__)

    if no_calls and no_messages:
        click.echo("Nothing to import: both --no-calls and --no-messages given.")
        return

    settings = _resolve_settings(ctx, {})
    _require_api_key(settings)

    options = CommunicationSyncOptions(
        start_date=_as_utc(since),
        end_date=_as_utc(until),
        include_calls=not no_calls,
        include_messages=not no_messages,
        page_size=page_size,
    )

    try:
        database = _open_database(ctx, settings)
        result = asyncio.run(_run_import(settings, database, options))
    except OpenPhoneAPIError as e:
        logger.error(f"Communications import failed: {e}")
        click.echo(click.style(f"Import failed: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(f"Calls processed: {result.calls_processed}")
    click.echo(f"Conversations processed: {result.conversations_processed}")
    click.echo(f"Communications created: {result.communications_created}")
    click.echo(f"Communications updated: {result.communications_updated}")
    click.echo(f"Communications skipped: {result.communications_skipped}")
    click.echo(f"Clients created: {result.clients_created}")


# =============================================================================
# Check Command
# =============================================================================


@cli.command("check")
@click.pass_context
def check_command(ctx: click.Context) -> None:
    """
    Check configuration and connectivity.

    Validates the settings, then confirms OpenPhone accepts the API key and
    the client database can be read.
    """
    settings = _resolve_settings(ctx, {})

    click.echo("=== OpenPhone Sync Configuration ===\n")
    click.echo(f"Configuration directory: {ctx.obj['config_dir']}")
    click.echo(f"Settings: {settings!r}")

    configured = settings.custom_fields.configured()
    if configured:
        click.echo(f"Custom fields: {', '.join(sorted(configured))}")
    else:
        click.echo("Custom fields: none configured")
    click.echo()

    _require_api_key(settings)

    database = _open_database(ctx, settings)
    report = asyncio.run(_run_check(settings, database))
    show_configuration_report(report)

    if not report.ok:
        sys.exit(1)

    click.echo(click.style("\nReady to sync!", fg="green"))


# =============================================================================
# Init DB Command
# =============================================================================


@cli.command("init-db")
@click.pass_context
def init_db_command(ctx: click.Context) -> None:
    """Create the local client database schema."""
    settings = _resolve_settings(ctx, {})
    db_path = _database_path(ctx, settings)

    try:
        database = _open_database(ctx, settings)
        database.close()
    except Exception as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style(f"Database initialized: {db_path}", fg="green"))


if __name__ == "__main__":
    cli()
