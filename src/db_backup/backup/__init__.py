"""Batch backup orchestration and result models.

Usage:
    from db_backup.backup import backup_targets, BackupResult
"""

from db_backup.backup.models import (
    ArchiveValidationResult,
    BackupResult,
    ResolvedJob,
)
from db_backup.backup.orchestrator import backup_target, backup_targets

__all__ = [
    "ArchiveValidationResult",
    "BackupResult",
    "ResolvedJob",
    "backup_target",
    "backup_targets",
]
