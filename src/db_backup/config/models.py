"""Pydantic models for backup configuration."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Driver kind used for engine dispatch
    settings: dict[str, Any] = Field(default_factory=dict)  # Extra per-profile backup settings


class BackupSettings(BaseModel):
    """Process-wide backup settings snapshot.

    Built once at startup and passed explicitly to ``ConfigResolver``.
    Frozen so nothing can mutate it mid-run.

    Attributes:
        defaults: Lowest-precedence values for single-key lookups
            (e.g. ``backup_dir``, ``backup_file``).  Engine keys such as
            ``pg_dump_cmd`` are read from the target config only, so they
            belong in ``[profiles.<name>.settings]`` or
            ``[backup.overrides.<name>]``.
        default_targets: Target names to back up when none are given.
            ``None`` means "not configured" (discovery is tried next).
        overrides: Environment-level per-target overrides, keyed by
            target name.  Merged over the target's own config.
    """

    model_config = ConfigDict(frozen=True)

    defaults: dict[str, Any] = Field(default_factory=dict)
    default_targets: list[str] | None = None
    overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)


class BackupConfig(BaseModel):
    """Complete backup configuration from db.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    settings: BackupSettings = Field(default_factory=BackupSettings)
