"""Backup targets package.

Provides the ``BackupTarget`` and ``DefaultTargetProvider`` Protocols and
the PostgreSQL target built from a ``DatabaseProfile``.

Usage:
    from db_backup.adapters import BackupTarget, PostgresTarget
"""

from db_backup.adapters.base import BackupTarget, DefaultTargetProvider, NullTargetProvider
from db_backup.adapters.postgres import PostgresTarget

__all__ = [
    "BackupTarget",
    "DefaultTargetProvider",
    "NullTargetProvider",
    "PostgresTarget",
]
