"""Configuration: validated settings plus TOML config-file discovery."""

from .loader import discover_config_file, find_project_root, load_config_file
from .settings import ENV_PREFIX, StrataSettings, get_settings

__all__ = [
    "ENV_PREFIX",
    "StrataSettings",
    "discover_config_file",
    "find_project_root",
    "get_settings",
    "load_config_file",
]
