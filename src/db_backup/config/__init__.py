"""Configuration management: profiles, TOML loading, and layered resolution.

Usage:
    >>> from db_backup.config import load_backup_config, ConfigResolver
"""

from db_backup.config.loader import load_backup_config, resolve_config_path
from db_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile
from db_backup.config.resolver import MISSING, ConfigResolver, IndirectCall, slugify

__all__ = [
    "load_backup_config",
    "resolve_config_path",
    "BackupConfig",
    "BackupSettings",
    "DatabaseProfile",
    "ConfigResolver",
    "IndirectCall",
    "MISSING",
    "slugify",
]
