"""CLI package for openphone_sync."""

from openphone_sync.cli.formatters import (
    format_progress,
    show_configuration_report,
    show_sync_errors,
)
from openphone_sync.cli.main import CLIENT_TYPES, cli, get_config_dir, get_config_file

__all__ = [
    "CLIENT_TYPES",
    "cli",
    "format_progress",
    "get_config_dir",
    "get_config_file",
    "show_configuration_report",
    "show_sync_errors",
]
