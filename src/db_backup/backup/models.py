"""Job and result models for backup runs.

Usage:
    from db_backup.backup.models import BackupResult, ResolvedJob

    job = ResolvedJob(target=target, config=config, backup_file="/tmp/main.db")
    result = BackupResult.ok(job.target, job.backup_file)
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def target_name(target: Any) -> str:
    """Display name for a target object or name string."""
    return target if isinstance(target, str) else getattr(target, "name", repr(target))


class ResolvedJob(BaseModel):
    """Everything needed to back up one target.

    Created once per target right before execution and never mutated.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: Any                                       # BackupTarget
    config: dict[str, Any] = Field(default_factory=dict)  # merged target config
    backup_file: str                                  # resolved output path
    options: dict[str, Any] = Field(default_factory=dict)  # call options

    @property
    def name(self) -> str:
        return target_name(self.target)


class BackupResult(BaseModel):
    """Outcome of one target's backup.

    Exactly one of ``backup_file`` (success) or ``error`` (failure) is set.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: str
    backup_file: str | None = None
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, target: Any, backup_file: str) -> "BackupResult":
        return cls(target=target_name(target), backup_file=backup_file)

    @classmethod
    def failed(cls, target: Any, error: Exception) -> "BackupResult":
        return cls(target=target_name(target), error=error)


class ArchiveValidationResult(BaseModel):
    """Result of ``validate_archive()``.

    ``valid`` is True when the archive exists, is non-empty, can be listed,
    and contains every expected table.  Extra tables are ignored.
    """

    path: str
    valid: bool
    tables: list[str] = Field(default_factory=list)
    missing_tables: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        if self.valid:
            return f"Archive valid ({len(self.tables)} tables)"

        lines = [f"Archive validation failed: {self.path}"]

        for error in self.errors:
            lines.append(f"  - {error}")

        if self.missing_tables:
            lines.append(f"\n  Missing tables ({len(self.missing_tables)}):")
            for table in self.missing_tables:
                lines.append(f"    - {table}")

        return "\n".join(lines)
