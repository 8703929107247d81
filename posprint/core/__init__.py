"""
Core utilities for posprint.

Non-Flask helpers used across the package:
- config: paths, JSON load/save, PrintSettings
- logging: request-id aware logging and root logger configuration
- errors: the print-core error taxonomy
- models: immutable data model shared by the printing subsystem
"""

from .config import (
    PrintSettings,
    default_config_path,
    default_export_path,
    ensure_dir,
    get_config_path,
    load_config,
    load_settings,
    save_config,
    save_settings,
)
from .errors import ErrorKind, PrintError
from .logging import JsonFormatter, RequestIdFilter, configure_logging

__all__ = [
    # config
    "PrintSettings",
    "default_config_path",
    "default_export_path",
    "ensure_dir",
    "get_config_path",
    "load_config",
    "load_settings",
    "save_config",
    "save_settings",
    # errors
    "ErrorKind",
    "PrintError",
    # logging
    "JsonFormatter",
    "RequestIdFilter",
    "configure_logging",
]
