"""
openphone_sync.utils - Utility module

Phone and name normalization, path resolution and logging configuration.
"""

from openphone_sync.utils.normalization import normalize_name, normalize_string
from openphone_sync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = ["normalize_name", "normalize_string", "resolve_config_dir", "DEFAULT_CONFIG_DIR"]
