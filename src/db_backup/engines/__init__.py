"""Backup engines.

Usage:
    from db_backup.engines import PgDumpEngine, select_engine
"""

from db_backup.engines.base import BackupEngine
from db_backup.engines.dispatch import BUILTIN_ENGINES, select_engine
from db_backup.engines.postgres import PgDumpEngine, list_archive_tables, validate_archive

__all__ = [
    "BackupEngine",
    "BUILTIN_ENGINES",
    "select_engine",
    "PgDumpEngine",
    "list_archive_tables",
    "validate_archive",
]
