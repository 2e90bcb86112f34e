"""
Entry point for running openphone_sync as a module.

Usage:
    python -m openphone_sync --help
    python -m openphone_sync check
    python -m openphone_sync sync --dry-run
"""

from openphone_sync.cli import cli

if __name__ == "__main__":
    cli()
