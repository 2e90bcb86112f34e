"""CLI output formatting functions.

This module contains functions for displaying sync progress, sync errors
and configuration reports on the command line.
"""

from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from openphone_sync.sync.engine import ConfigurationReport, SyncProgress, SyncResult

# Maximum number of errors listed before the rest are summarized
MAX_ERRORS_SHOWN = 20


def format_progress(progress: "SyncProgress") -> str:
    """
    Format a progress snapshot as a single line.

    Args:
        progress: The SyncProgress to format

    Returns:
        e.g. "Processing batch 2: 50/120 clients (created 40, updated 8,
        skipped 2, errors 0), ~35s remaining"
    """
    line = f"{progress.current_step}"
    if progress.total:
        line += (
            f": {progress.processed}/{progress.total} clients "
            f"(created {progress.created}, updated {progress.updated}, "
            f"skipped {progress.skipped}, errors {progress.errors})"
        )
    if progress.estimated_remaining is not None and progress.processed < progress.total:
        line += f", ~{progress.estimated_remaining:.0f}s remaining"
    return line


def show_sync_errors(result: "SyncResult") -> None:
    """
    Display the per-client errors of a sync run.

    Args:
        result: The SyncResult whose errors should be listed
    """
    if not result.errors:
        return

    click.echo(click.style(f"\n=== Errors ({len(result.errors)}) ===", fg="red"))
    for error in result.errors[:MAX_ERRORS_SHOWN]:
        contact = f" [{error.contact_type}]" if error.contact_type else ""
        click.echo(f"  {error.client_name} ({error.client_id}){contact}: {error.error}")

    if len(result.errors) > MAX_ERRORS_SHOWN:
        remaining = len(result.errors) - MAX_ERRORS_SHOWN
        click.echo(f"  ... and {remaining} more")


def _status(ok: bool) -> str:
    return click.style("OK", fg="green") if ok else click.style("FAILED", fg="red")


def show_configuration_report(report: "ConfigurationReport") -> None:
    """Display the result of ContactSyncEngine.test_configuration()."""
    click.echo(f"OpenPhone API: {_status(report.openphone_connection)}")
    click.echo(f"Client database: {_status(report.database_connection)}")
    click.echo(f"Sample clients: {report.sample_clients}")

    if report.errors:
        click.echo("\nProblems:")
        for error in report.errors:
            click.echo(f"  - {error}")
