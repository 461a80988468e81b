"""Backup target protocol definitions.

Defines the ``BackupTarget`` Protocol that every backup target must
implement, and the ``DefaultTargetProvider`` Protocol used to discover
targets when the caller does not name any.

Usage:
    from db_backup.adapters.base import BackupTarget

    async def count(target: BackupTarget) -> int:
        return await target.scalar("SELECT count(*) FROM pg_tables")
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol


class BackupTarget(Protocol):
    """A database that can be backed up.

    Attributes:
        name: Stable identifier (e.g. ``"MyApp.Repo"`` or a profile name).
            Used for per-target overrides and default file names.
        driver: Native driver kind (e.g. ``"postgres"``).  Selects the
            built-in engine when no explicit ``engine`` is configured.
    """

    name: str
    driver: str

    def config(self) -> Mapping[str, Any] | Sequence[tuple[str, Any]]:
        """Return the target's own base configuration.

        Either a mapping or a list of ``(key, value)`` pairs.  Typical keys:
        ``hostname``, ``port``, ``username``, ``password``, ``database``.
        """
        ...

    async def scalar(self, sql: str) -> Any:
        """Execute one query and return the first column of the first row.

        Implementations may open and close their own connection machinery
        around the call.  Callers fence the call with their own timeout.
        """
        ...


class DefaultTargetProvider(Protocol):
    """Discovers the targets declared by the surrounding project."""

    def default_targets(self) -> list[Any]:
        """Return target specs to back up when none were requested.

        An empty list means nothing was found.
        """
        ...


class NullTargetProvider:
    """Provider for embedding contexts with nothing to discover."""

    def default_targets(self) -> list[Any]:
        return []
