"""TOML configuration loading for backup profiles and settings."""

import os
import tomllib
from pathlib import Path

from db_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile

CONFIG_ENV_VAR = "DB_BACKUP_CONFIG"


def resolve_config_path(config_path: Path | str | None = None, env_prefix: str = "") -> Path:
    """Pick the config file path.

    Priority:
    1. Explicit ``config_path``
    2. ``{env_prefix}DB_BACKUP_CONFIG`` env var
    3. ``./db.toml``
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(f"{env_prefix}{CONFIG_ENV_VAR}")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "db.toml"


def load_backup_config(config_path: Path | None = None) -> BackupConfig:
    """Load backup configuration from TOML file.

    The ``[backup]`` table is split into three parts: ``default_targets``,
    ``overrides`` (per-target tables), and everything else, which becomes
    the process-wide defaults.

    Args:
        config_path: Path to db.toml (default: resolved via ``resolve_config_path``)

    Returns:
        BackupConfig with all profiles and the settings snapshot

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    config_path = resolve_config_path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Create a db.toml with [profiles.<name>] tables and a [backup] section."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    # Parse backup settings
    backup_section = dict(data.get("backup", {}))
    default_targets = backup_section.pop("default_targets", None)
    overrides = backup_section.pop("overrides", {})

    if default_targets is not None and not isinstance(default_targets, list):
        raise ValueError(
            f"[backup] default_targets must be a list of profile names, got: {default_targets!r}"
        )
    if not isinstance(overrides, dict):
        raise ValueError(f"[backup.overrides] must be a table, got: {overrides!r}")

    return BackupConfig(
        profiles=profiles,
        settings=BackupSettings(
            defaults=backup_section,
            default_targets=default_targets,
            overrides=overrides,
        ),
    )
