"""
Locations of the openphone-sync configuration directory and the files kept
in it (config.yaml and the local client database).
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CONFIG_DIR = Path.home() / ".openphone-sync"

CONFIG_DIR_ENV_VAR = "OPENPHONE_SYNC_CONFIG_DIR"

DEFAULT_DATABASE_FILE = "clients.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory to an absolute path.

    An explicit config_dir wins, then OPENPHONE_SYNC_CONFIG_DIR, then
    ~/.openphone-sync. The directory is not created here.
    """
    chosen = config_dir if config_dir is not None else os.environ.get(CONFIG_DIR_ENV_VAR)
    return Path(chosen or DEFAULT_CONFIG_DIR).expanduser().resolve()


def default_database_path(config_dir: Path) -> Path:
    """Return the default location of the local client database."""
    return config_dir / DEFAULT_DATABASE_FILE
