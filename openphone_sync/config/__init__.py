"""
openphone_sync.config - Configuration management module

Contains configuration file loading, environment resolution and defaults.
"""

from openphone_sync.config.loader import ConfigError, ConfigLoader
from openphone_sync.config.settings import (
    CustomFieldKeys,
    OpenPhoneSettings,
    load_settings,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "CustomFieldKeys",
    "OpenPhoneSettings",
    "load_settings",
]
