"""Backup engine protocol.

An engine performs the physical backup of one target to one file.  Engines
report operation failures as a failed ``BackupResult`` rather than raising,
and publish progress through the ``EventBus`` they were created with.

Usage:
    from db_backup.engines.base import BackupEngine

    async def run(engine: BackupEngine, target, config) -> None:
        result = await engine.backup(target, config, "/tmp/main.db", {})
        if not result.success:
            print(result.error)
"""

from typing import Any, Protocol

from db_backup.adapters.base import BackupTarget
from db_backup.backup.models import BackupResult


class BackupEngine(Protocol):
    """Backs up one target to one file."""

    async def backup(
        self,
        target: BackupTarget,
        config: dict[str, Any],
        backup_file: str,
        options: dict[str, Any],
    ) -> BackupResult:
        """Write a backup of ``target`` to ``backup_file``.

        Args:
            target: Target being backed up.
            config: Merged configuration for the target.
            backup_file: Resolved output path.
            options: Call-level options (highest-precedence lookups).

        Returns:
            ``BackupResult`` with the file path on success or the error on
            failure.
        """
        ...
